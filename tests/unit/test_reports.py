"""reports.py のユニットテスト."""

from pathlib import Path

import polars as pl

from tag_consolidation_engine.core.models import AutoFormatResult, MergeGroup, SkippedTag, TagRef
from tag_consolidation_engine.core.reports import export_auto_format_report, export_merge_suggestions


class TestExportReports:
    """CSVレポート出力のテスト."""

    def test_auto_format_report(self, tmp_path: Path) -> None:
        result = AutoFormatResult(
            updated_count=1,
            skipped=(SkippedTag("t2", "heart  failure", "existing collision", 'Would collide with "Heart Failure"'),),
        )
        path = export_auto_format_report(result, tmp_path / "reports")

        assert path == tmp_path / "reports" / "auto_format_skipped.csv"
        df = pl.read_csv(path)
        assert df.columns == ["tag_id", "name", "reason", "detail"]
        assert df["name"].to_list() == ["heart  failure"]

    def test_auto_format_nothing_skipped(self, tmp_path: Path) -> None:
        assert export_auto_format_report(AutoFormatResult(updated_count=3), tmp_path) is None
        assert list(tmp_path.iterdir()) == []

    def test_merge_suggestions(self, tmp_path: Path) -> None:
        groups = [
            MergeGroup("m1", "Adrenal Glands", (TagRef("v1", "adrenalgland"), TagRef("v2", "Adrenal gland"))),
            MergeGroup("m2", "Renal", (TagRef("v3", "renal system"),)),
        ]
        path = export_merge_suggestions(groups, tmp_path)

        df = pl.read_csv(path)
        assert len(df) == 3
        assert df["group"].to_list() == [1, 1, 2]
        assert df["variation_name"].to_list() == ["adrenalgland", "Adrenal gland", "renal system"]

    def test_merge_suggestions_empty(self, tmp_path: Path) -> None:
        assert export_merge_suggestions([], tmp_path) is None
