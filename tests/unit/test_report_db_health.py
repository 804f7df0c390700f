"""report_db_health のユニットテスト."""

import csv
import sqlite3
from pathlib import Path

from tag_consolidation_engine.core.database import create_database
from tag_consolidation_engine.tools.report_db_health import run_health_checks


def _read_summary(path: Path) -> dict[str, str]:
    with open(path, encoding="utf-8", newline="") as f:
        reader = csv.reader(f, delimiter="\t")
        next(reader)
        return {row[0]: row[1] for row in reader}


class TestRunHealthChecks:
    """健全性チェックのテスト."""

    def test_clean_database(self, tmp_path: Path) -> None:
        db_path = tmp_path / "tags.db"
        create_database(db_path)

        summary = _read_summary(run_health_checks(db_path, tmp_path / "out"))

        assert summary["quick_check"] == "ok"
        assert summary["total_tags"] == "0"
        assert summary["duplicate_tag_names"] == "0"
        assert summary["dangling_associations"] == "0"

    def test_detects_problems(self, tmp_path: Path) -> None:
        """name_key のずれ、非ASCIIの大文字小文字重複、宙に浮いた関連付けを検出する."""
        db_path = tmp_path / "tags.db"
        create_database(db_path)
        conn = sqlite3.connect(db_path)
        try:
            conn.executemany(
                "INSERT INTO TAGS (tag_id, scope, name, name_key, category, color) VALUES (?, ?, ?, ?, ?, ?)",
                [
                    ("1", "s", "éclair", "éclair", "concept", "green"),
                    ("2", "s", "ÉCLAIR", "ÉCLAIR", "concept", "green"),
                ],
            )
            # foreign_keys は接続単位で既定 OFF のため、存在しないタグへの行を作れる
            conn.execute("INSERT INTO CARD_TAGS (card_id, tag_id) VALUES ('c1', 'ghost')")
            conn.commit()
        finally:
            conn.close()

        out_dir = tmp_path / "out"
        summary = _read_summary(run_health_checks(db_path, out_dir))

        assert summary["total_tags"] == "2"
        assert summary["duplicate_tag_names"] == "2"
        assert summary["name_key_mismatches"] == "1"
        assert summary["dangling_associations"] == "1"
        assert (out_dir / "dangling_associations.tsv").exists()
