"""SQLiteタグストアのスキーマ作成ユーティリティ.

タグ本体（TAGS）と、コンテンツ↔タグの関連付けテーブル2種（現行/旧）を定義します。

注意:
    PRAGMA のうち foreign_keys / busy_timeout は接続単位の設定です。
    DBファイルへ恒久的に書き込まれる設定ではないため、接続を開くたびに
    ``apply_connection_pragmas()`` を呼ぶ必要があります。
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from .categories import CATEGORY_COLORS


@dataclass(frozen=True)
class AssociationTable:
    """関連付けテーブルの定義（テーブル名とコンテンツID列名）."""

    name: str
    content_column: str


# 処理順はこのタプルの順（現行 → 旧）
ASSOCIATION_TABLES: tuple[AssociationTable, ...] = (
    AssociationTable(name="CARD_TEMPLATE_TAGS", content_column="card_template_id"),
    AssociationTable(name="CARD_TAGS", content_column="card_id"),
)

PERSISTENT_PRAGMAS = [
    "PRAGMA journal_mode = WAL;",  # 読み取り並行性
    "PRAGMA synchronous = NORMAL;",
]
CONNECTION_PRAGMAS = [
    "PRAGMA foreign_keys = ON;",  # 関連付けの ON DELETE CASCADE に必要
    "PRAGMA busy_timeout = 5000;",
]


def apply_connection_pragmas(conn: sqlite3.Connection) -> None:
    """接続ごとに適用が必要な PRAGMA を設定する。"""
    for pragma in CONNECTION_PRAGMAS:
        conn.execute(pragma)


# category と color の組み合わせを DB 側でも拘束する（色の決定は categories.py のみ）
_COLOR_CHECK = " OR ".join(
    f"(category = '{category.value}' AND color = '{color}')" for category, color in CATEGORY_COLORS.items()
)

SCHEMA_SQL = [
    f"""
    CREATE TABLE IF NOT EXISTS TAGS (
        tag_id TEXT NOT NULL PRIMARY KEY,
        scope TEXT NOT NULL,
        name TEXT NOT NULL,
        name_key TEXT NOT NULL,
        category TEXT NOT NULL,
        color TEXT NOT NULL,
        created_at DATETIME DEFAULT (CURRENT_TIMESTAMP),
        updated_at DATETIME DEFAULT (CURRENT_TIMESTAMP),
        UNIQUE(scope, name_key),
        CONSTRAINT ck_category_color CHECK ({_COLOR_CHECK})
    );
    """,
    *[
        f"""
    CREATE TABLE IF NOT EXISTS {table.name} (
        {table.content_column} TEXT NOT NULL,
        tag_id TEXT NOT NULL,
        created_at DATETIME DEFAULT (CURRENT_TIMESTAMP),
        PRIMARY KEY ({table.content_column}, tag_id),
        FOREIGN KEY(tag_id) REFERENCES TAGS(tag_id) ON DELETE CASCADE
    );
    """
        for table in ASSOCIATION_TABLES
    ],
]

# 必須インデックス（想定クエリに基づく）
REQUIRED_INDEXES = [
    # スコープ内の一覧（名前順）
    "CREATE INDEX IF NOT EXISTS idx_tags_scope_name ON TAGS(scope, name);",
    # カテゴリ別一覧
    "CREATE INDEX IF NOT EXISTS idx_tags_scope_category ON TAGS(scope, category);",
    # タグIDから関連付けを引く（マージ時）
    *[
        f"CREATE INDEX IF NOT EXISTS idx_{table.name.lower()}_tag_id ON {table.name}(tag_id);"
        for table in ASSOCIATION_TABLES
    ],
]


def apply_schema(conn: sqlite3.Connection) -> None:
    """テーブルとインデックスを作成する（既存なら何もしない）."""
    for stmt in SCHEMA_SQL:
        conn.executescript(stmt)
    for index_sql in REQUIRED_INDEXES:
        conn.execute(index_sql)
    conn.commit()


def create_database(db_path: Path | str) -> None:
    """データベースファイルを新規作成する.

    Args:
        db_path: 作成するデータベースファイルパス

    Note:
        既に存在する場合は警告のみでファイルには触れない。
        既存DBへスキーマを追加したい場合は ``create_schema()`` を使う。
    """
    db_path = Path(db_path)

    if db_path.exists():
        logger.warning(f"Database already exists: {db_path}")
        return

    db_path.parent.mkdir(parents=True, exist_ok=True)
    logger.info(f"Creating database: {db_path}")

    conn = sqlite3.connect(db_path)
    try:
        for pragma in PERSISTENT_PRAGMAS:
            conn.execute(pragma)
            logger.debug(f"Applied: {pragma}")
        apply_connection_pragmas(conn)
        apply_schema(conn)
        logger.info("Database created successfully")

    except Exception as e:
        logger.error(f"Failed to create database: {e}")
        raise
    finally:
        conn.close()


def create_schema(db_path: Path | str) -> None:
    """既存DBにスキーマ（テーブル/インデックス）を作成する."""
    db_path = Path(db_path)
    if not db_path.exists():
        msg = f"Database does not exist: {db_path}"
        raise FileNotFoundError(msg)

    conn = sqlite3.connect(db_path)
    try:
        apply_schema(conn)
    finally:
        conn.close()


def build_indexes(db_path: Path | str) -> int:
    """必須インデックスを（無ければ）作成し、作成対象の件数を返す."""
    db_path = Path(db_path)
    if not db_path.exists():
        msg = f"Database does not exist: {db_path}"
        raise FileNotFoundError(msg)

    conn = sqlite3.connect(db_path)
    try:
        for index_sql in REQUIRED_INDEXES:
            logger.debug(f"Creating index: {index_sql}")
            conn.execute(index_sql)
        conn.commit()
        logger.info(f"Ensured {len(REQUIRED_INDEXES)} indexes on {db_path}")
        return len(REQUIRED_INDEXES)

    except Exception as e:
        logger.error(f"Failed to build indexes: {e}")
        raise
    finally:
        conn.close()
