"""タグの同一性管理と統合（重複排除・マージ・AI統合提案）エンジン."""

from .core.categories import TagCategory, color_for
from .core.exceptions import TagEngineError
from .core.merge import has_duplicate, merge_tag_lists
from .core.models import MergeGroup, MergeResult, RenameConflict, Tag
from .manager import TagManager

__version__ = "0.1.0"

__all__ = [
    "Tag",
    "TagCategory",
    "TagEngineError",
    "TagManager",
    "MergeGroup",
    "MergeResult",
    "RenameConflict",
    "color_for",
    "merge_tag_lists",
    "has_duplicate",
]
