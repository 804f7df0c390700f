"""タグエンジンで受け渡すレコード型.

永続化される ``Tag`` と、マージ計画・結果などの一時的な値オブジェクトを定義します。
全て frozen dataclass で、ストアやスレッド間で安全に共有できます。
"""

from __future__ import annotations

from dataclasses import dataclass, field

from .categories import TagCategory, coerce_category, color_for


@dataclass(frozen=True)
class Tag:
    """スコープ（ユーザー/組織）に属するタグ.

    ``color`` は常に ``color_for(category)`` と一致する。
    """

    tag_id: str
    scope: str
    name: str
    category: TagCategory
    color: str

    @classmethod
    def build(cls, tag_id: str, scope: str, name: str, category: TagCategory | str) -> Tag:
        """カテゴリから色を決めて Tag を組み立てる."""
        category = coerce_category(category)
        return cls(tag_id=tag_id, scope=scope, name=name, category=category, color=color_for(category))

    @property
    def ref(self) -> TagRef:
        return TagRef(tag_id=self.tag_id, name=self.name)


@dataclass(frozen=True)
class TagRef:
    tag_id: str
    name: str


@dataclass(frozen=True)
class MergeGroup:
    """AI提案を解決した統合候補（master 1件 + variations 1件以上）."""

    master_id: str
    master_name: str
    variations: tuple[TagRef, ...]

    @property
    def source_ids(self) -> list[str]:
        return [v.tag_id for v in self.variations]


@dataclass(frozen=True)
class SuggestedGroup:
    """分類器の応答をスキーマ検証しただけの（まだID未解決の）グループ."""

    master: str
    variations: tuple[str, ...]


@dataclass(frozen=True)
class MergePlan:
    """1つのマージ元タグに対する関連付けの処理計画.

    - transfer: マージ先へ付け替える content_id
    - dedupe: マージ先に既に存在するため、マージ元側の行を削除する content_id
    """

    transfer: tuple[str, ...] = ()
    dedupe: tuple[str, ...] = ()


@dataclass(frozen=True)
class AutoFormatUpdate:
    tag_id: str
    old_name: str
    new_name: str


@dataclass(frozen=True)
class SkippedTag:
    """自動整形でスキップされたタグ.

    reason は種別（"existing collision" 等）、detail は人間向けの説明。
    """

    tag_id: str
    name: str
    reason: str
    detail: str = ""


@dataclass(frozen=True)
class AutoFormatPlan:
    updates: tuple[AutoFormatUpdate, ...] = ()
    skipped: tuple[SkippedTag, ...] = ()


@dataclass(frozen=True)
class RenameConflict:
    """リネーム先の名前が既存タグと衝突した（エラーではなく、マージへの分岐点）."""

    tag_id: str
    existing_tag_id: str
    existing_tag_name: str

    @property
    def reason(self) -> str:
        return f'A tag named "{self.existing_tag_name}" already exists'


@dataclass(frozen=True)
class MergeResult:
    target_id: str
    affected_association_count: int
    deduplicated_count: int
    deleted_tag_count: int


@dataclass(frozen=True)
class AutoFormatResult:
    updated_count: int
    skipped: tuple[SkippedTag, ...] = ()


@dataclass(frozen=True)
class ConsolidationApplyResult:
    """AI提案を一括適用した結果（グループ単位の成功とスキップ）."""

    merged: tuple[MergeResult, ...] = ()
    skipped: tuple[tuple[MergeGroup, str], ...] = field(default_factory=tuple)
