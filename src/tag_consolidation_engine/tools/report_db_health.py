"""タグストアSQLiteの健全性チェックを行い、TSVレポートを出力する。"""

from __future__ import annotations

import argparse
import csv
import sqlite3
from collections.abc import Iterable, Sequence
from pathlib import Path

from tag_consolidation_engine.core.categories import CATEGORY_COLORS
from tag_consolidation_engine.core.database import ASSOCIATION_TABLES
from tag_consolidation_engine.core.normalize import normalize_name


def _write_tsv(path: Path, header: Sequence[str], rows: Iterable[Sequence[object]]) -> int:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8", newline="") as f:
        writer = csv.writer(f, delimiter="\t")
        writer.writerow(list(header))
        count = 0
        for r in rows:
            writer.writerow(["" if v is None else v for v in r])
            count += 1
    return count


def _fetchall(con: sqlite3.Connection, sql: str, params: Sequence[object] = ()) -> list[sqlite3.Row]:
    cur = con.execute(sql, params)
    return cur.fetchall()


def _find_duplicate_names(rows: Iterable[sqlite3.Row]) -> list[tuple[str, str, str, str]]:
    # SQLite の lower() は ASCII しか畳まないので Python 側で正規化して比較する
    groups: dict[tuple[str, str], list[sqlite3.Row]] = {}
    for r in rows:
        groups.setdefault((r["scope"], normalize_name(r["name"])), []).append(r)

    out: list[tuple[str, str, str, str]] = []
    for (scope, key), members in sorted(groups.items()):
        if len(members) < 2:
            continue
        for m in members:
            out.append((scope, key, m["tag_id"], m["name"]))
    return out


def run_health_checks(db_path: Path, out_dir: Path) -> Path:
    db_path = Path(db_path)
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    con = sqlite3.connect(db_path)
    try:
        con.row_factory = sqlite3.Row

        quick_check_rows = _fetchall(con, "PRAGMA quick_check;")
        quick_check = "|".join([r[0] for r in quick_check_rows]) if quick_check_rows else ""

        totals: list[tuple[str, object]] = [("total_tags", _fetchall(con, "SELECT COUNT(*) AS n FROM TAGS;")[0]["n"])]
        for table in ASSOCIATION_TABLES:
            n = _fetchall(con, f"SELECT COUNT(*) AS n FROM {table.name};")[0]["n"]
            totals.append((f"total_{table.name.lower()}", n))

        # Case-insensitive duplicates within a scope
        tag_rows = _fetchall(con, "SELECT tag_id, scope, name FROM TAGS ORDER BY scope, name, tag_id")
        dup_out = out_dir / "duplicate_tag_names.tsv"
        dup_count = _write_tsv(
            dup_out,
            ["scope", "name_key", "tag_id", "name"],
            _find_duplicate_names(tag_rows),
        )

        # name_key drifted from name
        key_drift_out = out_dir / "name_key_mismatches.tsv"
        key_drift_count = _write_tsv(
            key_drift_out,
            ["tag_id", "scope", "name", "name_key"],
            [
                (r["tag_id"], r["scope"], r["name"], r["name_key"])
                for r in _fetchall(con, "SELECT tag_id, scope, name, name_key FROM TAGS ORDER BY scope, name")
                if normalize_name(r["name"]) != r["name_key"]
            ],
        )

        # Color must follow category
        color_rows = _fetchall(con, "SELECT tag_id, scope, name, category, color FROM TAGS ORDER BY scope, name")
        expected = {c.value: color for c, color in CATEGORY_COLORS.items()}
        color_out = out_dir / "color_mismatches.tsv"
        color_count = _write_tsv(
            color_out,
            ["tag_id", "scope", "name", "category", "color", "expected_color"],
            [
                (r["tag_id"], r["scope"], r["name"], r["category"], r["color"], expected.get(r["category"]))
                for r in color_rows
                if expected.get(r["category"]) != r["color"]
            ],
        )

        # Association rows pointing at missing tags
        dangling: list[tuple[str, str, str]] = []
        for table in ASSOCIATION_TABLES:
            rows = _fetchall(
                con,
                f"""
                SELECT a.{table.content_column} AS content_id, a.tag_id
                FROM {table.name} a
                LEFT JOIN TAGS t ON t.tag_id = a.tag_id
                WHERE t.tag_id IS NULL
                ORDER BY a.tag_id, a.{table.content_column}
                """,
            )
            dangling.extend((table.name, r["content_id"], r["tag_id"]) for r in rows)
        dangling_out = out_dir / "dangling_associations.tsv"
        dangling_count = _write_tsv(dangling_out, ["table", "content_id", "tag_id"], dangling)

        summary_out = out_dir / "db_health_summary.tsv"
        _write_tsv(
            summary_out,
            ["metric", "value"],
            [
                ("db_path", str(db_path)),
                ("quick_check", quick_check),
                *totals,
                ("duplicate_tag_names", dup_count),
                ("name_key_mismatches", key_drift_count),
                ("color_mismatches", color_count),
                ("dangling_associations", dangling_count),
            ],
        )

        return summary_out
    finally:
        con.close()


def main() -> None:
    p = argparse.ArgumentParser(description="Check tag store DB health and write TSV reports.")
    p.add_argument("--db", type=Path, required=True, help="Path to SQLite DB file")
    p.add_argument("--out-dir", type=Path, required=True, help="Output directory for TSV reports")
    args = p.parse_args()

    summary = run_health_checks(args.db, args.out_dir)
    print(f"Wrote health reports: {summary.parent}")


if __name__ == "__main__":
    main()
