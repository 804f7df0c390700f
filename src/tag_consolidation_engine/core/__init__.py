"""タグエンジンのコア処理群（I/O を持たない純粋関数）.

- 正規化（比較キー、Title Case 整形）
- カテゴリと色の決定
- マージ計画（関連付けの transfer / dedupe）、自動整形計画
- AI応答の解析と名前解決
"""

from .categories import TagCategory, color_for, sort_tags_by_category
from .consolidation import batch_tags_for_analysis, parse_consolidation_response, resolve_tag_suggestions
from .merge import has_duplicate, merge_tag_lists, plan_auto_format, plan_merge
from .normalize import normalize_name, to_title_case

__all__ = [
    "TagCategory",
    "color_for",
    "sort_tags_by_category",
    "normalize_name",
    "to_title_case",
    "merge_tag_lists",
    "has_duplicate",
    "plan_merge",
    "plan_auto_format",
    "batch_tags_for_analysis",
    "parse_consolidation_response",
    "resolve_tag_suggestions",
]
