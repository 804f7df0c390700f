"""SQLite によるタグストア実装.

- 1接続をロックで直列化して共有する（スレッドから呼ばれても安全）
- 公開メソッドはそれぞれ1トランザクションでコミットする
- IN 句に渡すIDは ``_CHUNK_SIZE`` 件ごとに分割する（SQLite の変数上限対策）
"""

from __future__ import annotations

import sqlite3
import threading
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path

from loguru import logger

from tag_consolidation_engine.core.categories import TagCategory, coerce_category
from tag_consolidation_engine.core.database import (
    ASSOCIATION_TABLES,
    AssociationTable,
    apply_connection_pragmas,
    apply_schema,
)
from tag_consolidation_engine.core.exceptions import DuplicateNameError, NotFoundError, TagStoreError
from tag_consolidation_engine.core.models import Tag
from tag_consolidation_engine.core.normalize import normalize_name

from .base_store import BaseTagStore

_CHUNK_SIZE = 500
_TAG_COLUMNS = "tag_id, scope, name, category, color"
_JOINED_TAG_COLUMNS = "TAGS.tag_id, TAGS.scope, TAGS.name, TAGS.category, TAGS.color"


def _chunked(seq: Sequence[str], size: int = _CHUNK_SIZE) -> Iterator[list[str]]:
    for i in range(0, len(seq), size):
        yield list(seq[i : i + size])


def _placeholders(n: int) -> str:
    return ", ".join("?" * n)


def _row_to_tag(row: sqlite3.Row | tuple) -> Tag:
    tag_id, scope, name, category, color = row
    return Tag(tag_id=tag_id, scope=scope, name=name, category=TagCategory(category), color=color)


class SQLiteTagStore(BaseTagStore):
    """SQLite ファイル（または ``":memory:"``）をバックエンドにしたタグストア.

    Args:
        db_path: DBファイルパス。存在しなければスキーマごと作成する
        association_tables: 関連付けテーブル定義（処理順）
    """

    def __init__(
        self,
        db_path: Path | str,
        *,
        association_tables: Sequence[AssociationTable] = ASSOCIATION_TABLES,
    ) -> None:
        self.db_path = db_path if str(db_path) == ":memory:" else Path(db_path)
        self._tables = {t.name: t for t in association_tables}
        self._table_order = [t.name for t in association_tables]
        self._lock = threading.RLock()

        if isinstance(self.db_path, Path):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        apply_connection_pragmas(self._conn)
        apply_schema(self._conn)
        logger.debug(f"Opened tag store: {self.db_path}")

    # ------------------------------------------------------------------
    # 内部ヘルパー
    # ------------------------------------------------------------------

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                with self._conn:
                    yield self._conn
            except (DuplicateNameError, NotFoundError, ValueError):
                raise
            except sqlite3.Error as e:
                logger.error(f"Tag store operation failed: {e}")
                raise TagStoreError(f"Tag store error: {e}") from e

    def _table(self, table: str) -> AssociationTable:
        try:
            return self._tables[table]
        except KeyError:
            raise ValueError(f"Unknown association table: {table!r}") from None

    def _fetch_tag(self, conn: sqlite3.Connection, tag_id: str) -> Tag | None:
        row = conn.execute(f"SELECT {_TAG_COLUMNS} FROM TAGS WHERE tag_id = ?", (tag_id,)).fetchone()
        return _row_to_tag(row) if row else None

    # ------------------------------------------------------------------
    # タグ
    # ------------------------------------------------------------------

    def get(self, tag_id: str) -> Tag | None:
        with self._transaction() as conn:
            return self._fetch_tag(conn, tag_id)

    def get_many(self, tag_ids: Sequence[str]) -> list[Tag]:
        unique_ids = list(dict.fromkeys(tag_ids))
        found: dict[str, Tag] = {}
        with self._transaction() as conn:
            for chunk in _chunked(unique_ids):
                rows = conn.execute(
                    f"SELECT {_TAG_COLUMNS} FROM TAGS WHERE tag_id IN ({_placeholders(len(chunk))})",
                    chunk,
                ).fetchall()
                for row in rows:
                    tag = _row_to_tag(row)
                    found[tag.tag_id] = tag
        return [found[i] for i in unique_ids if i in found]

    def find_by_name(self, scope: str, name: str) -> Tag | None:
        with self._transaction() as conn:
            row = conn.execute(
                f"SELECT {_TAG_COLUMNS} FROM TAGS WHERE scope = ? AND name_key = ?",
                (scope, normalize_name(name)),
            ).fetchone()
        return _row_to_tag(row) if row else None

    def insert(self, tag: Tag) -> Tag:
        with self._transaction() as conn:
            try:
                conn.execute(
                    "INSERT INTO TAGS (tag_id, scope, name, name_key, category, color) VALUES (?, ?, ?, ?, ?, ?)",
                    (
                        tag.tag_id,
                        tag.scope,
                        tag.name,
                        normalize_name(tag.name),
                        coerce_category(tag.category).value,
                        tag.color,
                    ),
                )
            except sqlite3.IntegrityError as e:
                if "UNIQUE" in str(e) and "name_key" in str(e):
                    raise DuplicateNameError(tag.scope, tag.name) from e
                raise
        return tag

    def update(
        self,
        tag_id: str,
        *,
        name: str | None = None,
        category: TagCategory | None = None,
        color: str | None = None,
    ) -> Tag:
        if category is not None and color is None:
            raise ValueError("category must be updated together with color")

        assignments: list[str] = []
        params: list[object] = []
        if name is not None:
            assignments += ["name = ?", "name_key = ?"]
            params += [name, normalize_name(name)]
        if category is not None:
            assignments.append("category = ?")
            params.append(coerce_category(category).value)
        if color is not None:
            assignments.append("color = ?")
            params.append(color)

        with self._transaction() as conn:
            if not assignments:
                current = self._fetch_tag(conn, tag_id)
                if current is None:
                    raise NotFoundError(tag_id)
                return current

            assignments.append("updated_at = CURRENT_TIMESTAMP")
            try:
                cur = conn.execute(
                    f"UPDATE TAGS SET {', '.join(assignments)} WHERE tag_id = ?",
                    [*params, tag_id],
                )
            except sqlite3.IntegrityError as e:
                if "UNIQUE" in str(e) and name is not None:
                    scope_row = conn.execute("SELECT scope FROM TAGS WHERE tag_id = ?", (tag_id,)).fetchone()
                    raise DuplicateNameError(scope_row[0] if scope_row else "", name) from e
                raise
            if cur.rowcount == 0:
                raise NotFoundError(tag_id)
            updated = self._fetch_tag(conn, tag_id)
        assert updated is not None
        return updated

    def delete(self, tag_id: str) -> None:
        with self._transaction() as conn:
            cur = conn.execute("DELETE FROM TAGS WHERE tag_id = ?", (tag_id,))
            if cur.rowcount == 0:
                raise NotFoundError(tag_id)

    def list_by_scope(self, scope: str) -> list[Tag]:
        with self._transaction() as conn:
            rows = conn.execute(
                f"SELECT {_TAG_COLUMNS} FROM TAGS WHERE scope = ? ORDER BY name, tag_id",
                (scope,),
            ).fetchall()
        return [_row_to_tag(r) for r in rows]

    # ------------------------------------------------------------------
    # 関連付け
    # ------------------------------------------------------------------

    def association_tables(self) -> list[str]:
        return list(self._table_order)

    def find_associations_by_tag(self, table: str, tag_id: str) -> list[str]:
        t = self._table(table)
        with self._transaction() as conn:
            rows = conn.execute(
                f"SELECT {t.content_column} FROM {t.name} WHERE tag_id = ? ORDER BY {t.content_column}",
                (tag_id,),
            ).fetchall()
        return [r[0] for r in rows]

    def find_tags_by_content(self, table: str, content_id: str) -> list[Tag]:
        t = self._table(table)
        with self._transaction() as conn:
            rows = conn.execute(
                f"SELECT {_JOINED_TAG_COLUMNS} FROM TAGS JOIN {t.name} AS a ON a.tag_id = TAGS.tag_id "
                f"WHERE a.{t.content_column} = ? ORDER BY TAGS.name, TAGS.tag_id",
                (content_id,),
            ).fetchall()
        return [_row_to_tag(r) for r in rows]

    def transfer_associations(
        self,
        table: str,
        content_ids: Sequence[str],
        from_tag_id: str,
        to_tag_id: str,
    ) -> int:
        t = self._table(table)
        if not content_ids:
            return 0

        transferred = 0
        leftovers = 0
        with self._transaction() as conn:
            for chunk in _chunked(list(dict.fromkeys(content_ids))):
                ph = _placeholders(len(chunk))
                # 付け替え先に既に行がある content_id は OR IGNORE で残り、直後の DELETE で消える
                cur = conn.execute(
                    f"UPDATE OR IGNORE {t.name} SET tag_id = ? WHERE tag_id = ? AND {t.content_column} IN ({ph})",
                    [to_tag_id, from_tag_id, *chunk],
                )
                transferred += cur.rowcount
                cur = conn.execute(
                    f"DELETE FROM {t.name} WHERE tag_id = ? AND {t.content_column} IN ({ph})",
                    [from_tag_id, *chunk],
                )
                leftovers += cur.rowcount

        if leftovers:
            logger.warning(
                f"{t.name}: {leftovers} association(s) already linked to {to_tag_id}; "
                f"removed source-side rows of {from_tag_id} instead of transferring"
            )
        return transferred

    def delete_associations(self, table: str, content_ids: Sequence[str], tag_id: str) -> int:
        t = self._table(table)
        if not content_ids:
            return 0

        deleted = 0
        with self._transaction() as conn:
            for chunk in _chunked(list(dict.fromkeys(content_ids))):
                cur = conn.execute(
                    f"DELETE FROM {t.name} WHERE tag_id = ? AND {t.content_column} IN ({_placeholders(len(chunk))})",
                    [tag_id, *chunk],
                )
                deleted += cur.rowcount
        return deleted

    def add_associations(self, table: str, content_ids: Sequence[str], tag_id: str) -> int:
        t = self._table(table)
        if not content_ids:
            return 0

        with self._transaction() as conn:
            if self._fetch_tag(conn, tag_id) is None:
                raise NotFoundError(tag_id)
            before = conn.total_changes
            conn.executemany(
                f"INSERT OR IGNORE INTO {t.name} ({t.content_column}, tag_id) VALUES (?, ?)",
                [(content_id, tag_id) for content_id in dict.fromkeys(content_ids)],
            )
            return conn.total_changes - before

    def close(self) -> None:
        with self._lock:
            self._conn.close()
