"""操作結果の出力（レポート）.

自動整形でスキップしたタグと、AI統合提案をCSVとして出力します。
"""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path

import polars as pl

from .models import AutoFormatResult, MergeGroup

AUTO_FORMAT_REPORT = "auto_format_skipped.csv"
MERGE_SUGGESTIONS_REPORT = "merge_suggestions.csv"


def export_auto_format_report(result: AutoFormatResult, output_dir: Path | str) -> Path | None:
    """自動整形のスキップ一覧をCSVに出力する.

    Returns:
        出力したCSVのパス（スキップが無ければ None）
    """
    if not result.skipped:
        return None

    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    path = output_dir / AUTO_FORMAT_REPORT

    pl.DataFrame(
        {
            "tag_id": [s.tag_id for s in result.skipped],
            "name": [s.name for s in result.skipped],
            "reason": [s.reason for s in result.skipped],
            "detail": [s.detail for s in result.skipped],
        },
        schema={"tag_id": pl.Utf8, "name": pl.Utf8, "reason": pl.Utf8, "detail": pl.Utf8},
    ).write_csv(path)
    return path


def export_merge_suggestions(groups: Sequence[MergeGroup], output_dir: Path | str) -> Path | None:
    """統合候補をCSVに出力する（variation 1件につき1行）.

    Returns:
        出力したCSVのパス（候補が無ければ None）
    """
    rows = [
        {
            "group": i,
            "master_id": g.master_id,
            "master_name": g.master_name,
            "variation_id": v.tag_id,
            "variation_name": v.name,
        }
        for i, g in enumerate(groups, start=1)
        for v in g.variations
    ]
    if not rows:
        return None

    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    path = output_dir / MERGE_SUGGESTIONS_REPORT
    pl.DataFrame(rows).write_csv(path)
    return path
