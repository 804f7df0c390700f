"""タグカテゴリと色の決定ポリシー.

色はカテゴリから一意に決まる（source=blue / topic=purple / concept=green）。
タグの色を個別に設定する経路は存在せず、カテゴリを書き込む全ての経路で
``color_for()`` を通して同じ操作内で色を再計算する。
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from enum import Enum
from typing import TYPE_CHECKING

from .normalize import normalize_name

if TYPE_CHECKING:
    from .models import Tag


class TagCategory(str, Enum):
    """タグの3分類."""

    SOURCE = "source"  # 出典（教科書・試験名など）
    TOPIC = "topic"  # 科目・領域
    CONCEPT = "concept"  # 個別の概念


CATEGORY_COLORS: dict[TagCategory, str] = {
    TagCategory.SOURCE: "blue",
    TagCategory.TOPIC: "purple",
    TagCategory.CONCEPT: "green",
}

# 表示順（小さいほど先）。Source → Topic → Concept
CATEGORY_PRIORITY: dict[TagCategory, int] = {
    TagCategory.SOURCE: 1,
    TagCategory.TOPIC: 2,
    TagCategory.CONCEPT: 3,
}
UNCATEGORIZED_PRIORITY = 99


def coerce_category(category: TagCategory | str) -> TagCategory:
    """文字列/列挙値を TagCategory に揃える.

    Raises:
        ValueError: 未知のカテゴリ
    """
    if isinstance(category, TagCategory):
        return category
    try:
        return TagCategory(str(category).strip().lower())
    except ValueError:
        valid = ", ".join(c.value for c in TagCategory)
        raise ValueError(f"Invalid tag category: {category!r} (valid: {valid})") from None


def color_for(category: TagCategory | str) -> str:
    """カテゴリに対応する色を返す.

    Examples:
        >>> color_for("source")
        'blue'
        >>> color_for(TagCategory.CONCEPT)
        'green'
    """
    return CATEGORY_COLORS[coerce_category(category)]


def _priority(tag: Tag) -> int:
    try:
        return CATEGORY_PRIORITY[coerce_category(tag.category)]
    except ValueError:
        return UNCATEGORIZED_PRIORITY


def sort_tags_by_category(tags: Iterable[Tag]) -> list[Tag]:
    """カテゴリ優先度 → 名前 の順に並べた新しいリストを返す（入力は変更しない）."""
    return sorted(tags, key=lambda t: (_priority(t), t.name.casefold(), t.name))


def group_by_category(tags: Iterable[Tag]) -> dict[TagCategory, list[Tag]]:
    """カテゴリ別にグループ化する（全カテゴリのキーを必ず含む、各リストは名前順）."""
    grouped: dict[TagCategory, list[Tag]] = {c: [] for c in TagCategory}
    for tag in sorted(tags, key=lambda t: t.name):
        grouped[coerce_category(tag.category)].append(tag)
    return grouped


def canonical_topic(name: str, golden_topics: Sequence[str]) -> str | None:
    """公式トピック一覧（Golden List）に含まれる場合、その正規表記を返す.

    大文字小文字・前後空白は無視して比較する。

    Examples:
        >>> canonical_topic("  customer service", ["Safety", "Customer Service"])
        'Customer Service'
        >>> canonical_topic("unknown", ["Safety"]) is None
        True
    """
    key = normalize_name(name)
    if not key:
        return None
    for topic in golden_topics:
        if normalize_name(topic) == key:
            return topic.strip()
    return None
