"""タグ管理オーケストレーター.

純粋関数群（core/merge.py など）とタグストアを結び付け、
作成・リネーム・カテゴリ変更・マージ・自動整形・AI統合提案の各操作を提供する。

ここでは
- 入力検証（I/O の前に弾く）
- 操作の順序（再現性）と原子性の単位
- 結果の集計とログ
を担い、関連付けの差分計算そのものは core 側へ寄せる。

ストアと分類器はコンストラクタで受け取り、ライフサイクルは呼び出し側が管理する。
"""

from __future__ import annotations

import threading
import uuid
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field

from loguru import logger

from tag_consolidation_engine.adapters.base_store import BaseTagStore
from tag_consolidation_engine.core.categories import (
    TagCategory,
    canonical_topic,
    coerce_category,
    color_for,
    group_by_category,
    sort_tags_by_category,
)
from tag_consolidation_engine.core.exceptions import (
    ClassifierUnavailableError,
    DuplicateNameError,
    EmptyNameError,
    NoSourceTagsError,
    NotFoundError,
    SelfMergeError,
    TagEngineError,
)
from tag_consolidation_engine.core.merge import deduplicate_tags, plan_auto_format, plan_multi_merge
from tag_consolidation_engine.core.models import (
    AutoFormatResult,
    ConsolidationApplyResult,
    MergeGroup,
    MergeResult,
    RenameConflict,
    SkippedTag,
    Tag,
)
from tag_consolidation_engine.core.normalize import normalize_name, to_title_case
from tag_consolidation_engine.suggestions import SuggestionResolver

SKIP_UPDATE_FAILED = "update failed"
BULK_LINK_CHUNK_SIZE = 100


def new_tag_id() -> str:
    return uuid.uuid4().hex


@dataclass
class _TargetLock:
    lock: threading.Lock = field(default_factory=threading.Lock)
    holders: int = 0


class TagManager:
    """タグの同一性と統合を管理する.

    Args:
        store: タグストア
        suggestion_resolver: AI統合提案の解決器（未設定なら analyze_consolidation は利用不可）
        formatter: 自動整形に使う整形関数（デフォルトは Title Case）
        golden_topics: 公式トピック一覧。取り込み時にこの表記・topic カテゴリへ寄せる
    """

    def __init__(
        self,
        store: BaseTagStore,
        *,
        suggestion_resolver: SuggestionResolver | None = None,
        formatter: Callable[[str], str] = to_title_case,
        golden_topics: Sequence[str] = (),
    ) -> None:
        self.store = store
        self.suggestion_resolver = suggestion_resolver
        self.formatter = formatter
        self.golden_topics = tuple(golden_topics)

        self._target_locks: dict[str, _TargetLock] = {}
        self._locks_guard = threading.Lock()

    # ------------------------------------------------------------------
    # 内部ヘルパー
    # ------------------------------------------------------------------

    @contextmanager
    def _target_lock(self, target_id: str) -> Iterator[None]:
        """同じマージ先へのマージを直列化する（待ち手がいなくなったロックは破棄する）."""
        with self._locks_guard:
            entry = self._target_locks.setdefault(target_id, _TargetLock())
            entry.holders += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._locks_guard:
                entry.holders -= 1
                if entry.holders == 0:
                    del self._target_locks[target_id]

    def _require_tag(self, tag_id: str, scope: str | None = None) -> Tag:
        tag = self.store.get(tag_id)
        if tag is None or (scope is not None and tag.scope != scope):
            raise NotFoundError(tag_id)
        return tag

    def _find_conflict(self, scope: str, name: str, exclude_id: str) -> Tag | None:
        existing = self.store.find_by_name(scope, name)
        if existing is not None and existing.tag_id != exclude_id:
            return existing
        return None

    # ------------------------------------------------------------------
    # 参照
    # ------------------------------------------------------------------

    def get_tag(self, tag_id: str, *, scope: str | None = None) -> Tag:
        return self._require_tag(tag_id, scope)

    def list_tags(self, scope: str) -> list[Tag]:
        return self.store.list_by_scope(scope)

    def tags_by_category(self, scope: str) -> dict[TagCategory, list[Tag]]:
        return group_by_category(self.store.list_by_scope(scope))

    def golden_topic_names(self, scope: str) -> list[str]:
        """スコープ内の topic タグ名（名前順）."""
        return [t.name for t in self.tags_by_category(scope)[TagCategory.TOPIC]]

    def golden_source_tags(self, scope: str) -> list[Tag]:
        """スコープ内の source タグ（名前順）."""
        return self.tags_by_category(scope)[TagCategory.SOURCE]

    def content_tags(self, content_id: str, *, table: str | None = None, scope: str | None = None) -> list[Tag]:
        """コンテンツに紐づくタグをカテゴリ優先度 → 名前の順で返す."""
        table = table or self.store.association_tables()[0]
        tags = self.store.find_tags_by_content(table, content_id)
        if scope is not None:
            tags = [t for t in tags if t.scope == scope]
        return sort_tags_by_category(tags)

    # ------------------------------------------------------------------
    # 作成・更新・削除
    # ------------------------------------------------------------------

    def create_tag(self, scope: str, name: str, category: TagCategory | str = TagCategory.CONCEPT) -> Tag:
        """タグを作成する（色はカテゴリから決まる）.

        Raises:
            EmptyNameError: 名前が空
            DuplicateNameError: スコープ内に同名（大文字小文字無視）のタグがある
        """
        trimmed = name.strip()
        if not trimmed:
            raise EmptyNameError()
        category = coerce_category(category)

        if self.store.find_by_name(scope, trimmed) is not None:
            raise DuplicateNameError(scope, trimmed)

        tag = self.store.insert(Tag.build(new_tag_id(), scope, trimmed, category))
        logger.info(f"Created tag {tag.name!r} ({tag.category.value}) in scope={scope}")
        return tag

    def rename_tag(self, tag_id: str, new_name: str, *, scope: str | None = None) -> Tag | RenameConflict:
        """タグ名を変更する.

        衝突時は例外ではなく RenameConflict を返し、何も書き込まない。
        呼び出し側は続けて ``merge_tags([tag_id], conflict.existing_tag_id)`` を選べる。

        Raises:
            EmptyNameError: 新しい名前が空
            NotFoundError: タグが存在しない
        """
        trimmed = new_name.strip()
        if not trimmed:
            raise EmptyNameError()

        tag = self._require_tag(tag_id, scope)
        if tag.name == trimmed:
            return tag

        conflict = self._find_conflict(tag.scope, trimmed, exclude_id=tag.tag_id)
        if conflict is not None:
            logger.info(f"Rename of {tag.name!r} to {trimmed!r} conflicts with existing tag {conflict.tag_id}")
            return RenameConflict(
                tag_id=tag.tag_id,
                existing_tag_id=conflict.tag_id,
                existing_tag_name=conflict.name,
            )

        renamed = self.store.update(tag.tag_id, name=trimmed)
        logger.info(f"Renamed tag {tag.name!r} -> {renamed.name!r}")
        return renamed

    def update_tag(self, tag_id: str, name: str, category: TagCategory | str | None = None) -> Tag:
        """名前とカテゴリをまとめて更新する（色はカテゴリから再計算）.

        rename_tag と違い、名前の衝突は DuplicateNameError として扱う。
        """
        trimmed = name.strip()
        if not trimmed:
            raise EmptyNameError()
        new_category = coerce_category(category) if category is not None else None

        tag = self._require_tag(tag_id)
        if self._find_conflict(tag.scope, trimmed, exclude_id=tag.tag_id) is not None:
            raise DuplicateNameError(tag.scope, trimmed)

        final_category = new_category or tag.category
        return self.store.update(
            tag.tag_id,
            name=trimmed,
            category=final_category,
            color=color_for(final_category),
        )

    def update_category(self, tag_id: str, new_category: TagCategory | str) -> Tag:
        """カテゴリを変更し、色を同じ更新で再計算する."""
        category = coerce_category(new_category)
        tag = self.store.update(tag_id, category=category, color=color_for(category))
        logger.info(f"Changed category of {tag.name!r} to {category.value} (color={tag.color})")
        return tag

    def delete_tag(self, tag_id: str, *, scope: str | None = None) -> None:
        """タグを削除する（関連付けはストア側でカスケード削除される）."""
        tag = self._require_tag(tag_id, scope)
        self.store.delete(tag.tag_id)
        logger.info(f"Deleted tag {tag.name!r} ({tag.tag_id})")

    # ------------------------------------------------------------------
    # マージ
    # ------------------------------------------------------------------

    def merge_tags(self, source_ids: Sequence[str], target_id: str, *, scope: str | None = None) -> MergeResult:
        """複数のマージ元タグを1つのマージ先タグへ統合する.

        手順:
            1. 関連付けテーブルごとに、マージ先と各マージ元の関連付けをまとめて取得
            2. 左から順に transfer / dedupe を計画し（カバー済み集合を引き継ぐ）、一括実行
            3. 全テーブル処理後にマージ元タグを削除

        マージ元削除後に同じIDで再実行すると NotFoundError になる（IDに対して再入不可）。

        Raises:
            NoSourceTagsError: マージ元が空
            SelfMergeError: マージ元にマージ先が含まれる
            NotFoundError: いずれかのタグIDが解決できない
            TypeError: source_ids に文字列が1つだけ渡された
        """
        if isinstance(source_ids, str):
            raise TypeError("source_ids must be a sequence of tag ids, not a str")
        if not source_ids:
            raise NoSourceTagsError()
        if target_id in source_ids:
            raise SelfMergeError(target_id)
        ordered_sources = list(dict.fromkeys(source_ids))

        with self._target_lock(target_id):
            target = self._require_tag(target_id, scope)
            found = {t.tag_id: t for t in self.store.get_many(ordered_sources)}
            missing = [i for i in ordered_sources if i not in found or found[i].scope != target.scope]
            if missing:
                raise NotFoundError(missing)

            transferred_total = 0
            deduped_total = 0
            for table in self.store.association_tables():
                target_assocs = self.store.find_associations_by_tag(table, target.tag_id)
                sources = [(sid, self.store.find_associations_by_tag(table, sid)) for sid in ordered_sources]

                for source_id, plan in plan_multi_merge(sources, target_assocs):
                    if plan.transfer:
                        transferred_total += self.store.transfer_associations(
                            table, plan.transfer, source_id, target.tag_id
                        )
                    if plan.dedupe:
                        deduped_total += self.store.delete_associations(table, plan.dedupe, source_id)
                    logger.debug(
                        f"{table}: {source_id} -> {target.tag_id} "
                        f"transfer={len(plan.transfer)} dedupe={len(plan.dedupe)}"
                    )

            deleted = 0
            for source_id in ordered_sources:
                self.store.delete(source_id)
                deleted += 1

            # マージ先として選ばれた時点で色をカテゴリに揃え直す
            if target.color != color_for(target.category):
                self.store.update(target.tag_id, category=target.category, color=color_for(target.category))

        logger.info(
            f"Merged {deleted} tag(s) into {target.name!r}: "
            f"transferred={transferred_total} deduplicated={deduped_total}"
        )
        return MergeResult(
            target_id=target.tag_id,
            affected_association_count=transferred_total,
            deduplicated_count=deduped_total,
            deleted_tag_count=deleted,
        )

    # ------------------------------------------------------------------
    # 自動整形
    # ------------------------------------------------------------------

    def auto_format_all(self, scope: str, formatter: Callable[[str], str] | None = None) -> AutoFormatResult:
        """スコープ内の全タグ名を整形する（新たな重複を作る整形はスキップ）.

        各更新は独立してコミットされる。インフラ障害で失敗した更新は中断せず skipped に積む。
        """
        formatter = formatter or self.formatter
        tags = self.store.list_by_scope(scope)
        plan = plan_auto_format(tags, formatter)

        updated = 0
        skipped: list[SkippedTag] = list(plan.skipped)
        for update in plan.updates:
            try:
                self.store.update(update.tag_id, name=update.new_name)
            except TagEngineError as e:
                logger.warning(f"Auto-format of {update.old_name!r} failed: {e.reason}")
                skipped.append(
                    SkippedTag(
                        tag_id=update.tag_id,
                        name=update.old_name,
                        reason=SKIP_UPDATE_FAILED,
                        detail=e.reason,
                    )
                )
                continue
            updated += 1

        logger.info(f"Auto-formatted {updated} tag(s) in scope={scope}, skipped {len(skipped)}")
        return AutoFormatResult(updated_count=updated, skipped=tuple(skipped))

    # ------------------------------------------------------------------
    # AI統合提案
    # ------------------------------------------------------------------

    def analyze_consolidation(self, scope: str) -> list[MergeGroup]:
        """AI分類器でスコープ内のタグを分析し、統合候補を返す.

        Raises:
            ClassifierUnavailableError: 分類器が未設定、またはどのチャンクにも到達できない
        """
        if self.suggestion_resolver is None:
            raise ClassifierUnavailableError("AI classifier is not configured")
        return self.suggestion_resolver.analyze(scope)

    def apply_merge_groups(self, groups: Sequence[MergeGroup], *, scope: str | None = None) -> ConsolidationApplyResult:
        """統合候補をまとめて適用する.

        先のグループで既に削除されたタグは後続グループから除外する。
        master が消えている、または生きている variation が無いグループはスキップする。
        """
        merged: list[MergeResult] = []
        skipped: list[tuple[MergeGroup, str]] = []

        for group in groups:
            candidates = [i for i in dict.fromkeys(group.source_ids) if i != group.master_id]
            live = [t.tag_id for t in self.store.get_many(candidates)]
            if self.store.get(group.master_id) is None:
                skipped.append((group, f'Master tag "{group.master_name}" no longer exists'))
                continue
            if not live:
                skipped.append((group, "No remaining variations to merge"))
                continue
            try:
                merged.append(self.merge_tags(live, group.master_id, scope=scope))
            except (NotFoundError, SelfMergeError) as e:
                logger.warning(f"Skipped suggestion for {group.master_name!r}: {e.reason}")
                skipped.append((group, e.reason))

        return ConsolidationApplyResult(merged=tuple(merged), skipped=tuple(skipped))

    # ------------------------------------------------------------------
    # 取り込み（インジェスト）
    # ------------------------------------------------------------------

    def ensure_tags(
        self,
        scope: str,
        names: Sequence[str],
        category: TagCategory | str = TagCategory.CONCEPT,
    ) -> list[Tag]:
        """タグ名リストを既存タグへ解決し、無いものは作成する（find-or-create）.

        - 名前リストは先に重複排除する（最初の表記が残る）
        - 公式トピックに一致する名前はその表記・topic カテゴリで扱う
        - 作成が他の書き込みと競合した場合は、先に作られた方を使う
        """
        category = coerce_category(category)
        tags: list[Tag] = []
        seen: set[str] = set()

        for raw in deduplicate_tags(names):
            golden = canonical_topic(raw, self.golden_topics)
            name = golden or raw
            key = normalize_name(name)
            if key in seen:
                continue
            seen.add(key)

            existing = self.store.find_by_name(scope, name)
            if existing is None:
                try:
                    existing = self.create_tag(scope, name, TagCategory.TOPIC if golden else category)
                except DuplicateNameError:
                    existing = self.store.find_by_name(scope, name)
                    if existing is None:
                        raise
            tags.append(existing)
        return tags

    def tag_content(
        self,
        scope: str,
        content_id: str,
        names: Sequence[str],
        *,
        table: str | None = None,
        category: TagCategory | str = TagCategory.CONCEPT,
    ) -> list[Tag]:
        """コンテンツにタグ名リストを（必要なら作成して）冪等に紐付ける."""
        table = table or self.store.association_tables()[0]
        tags = self.ensure_tags(scope, names, category)
        for tag in tags:
            self.store.add_associations(table, [content_id], tag.tag_id)
        logger.debug(f"Linked {len(tags)} tag(s) to content {content_id} in {table}")
        return tags

    def bulk_add_tag(self, tag_id: str, content_ids: Sequence[str], *, table: str | None = None) -> int:
        """1つのタグを複数コンテンツへ冪等に紐付け、新規に作成した関連付け数を返す."""
        table = table or self.store.association_tables()[0]
        tag = self._require_tag(tag_id)
        unique_ids = list(dict.fromkeys(content_ids))

        created = 0
        for i in range(0, len(unique_ids), BULK_LINK_CHUNK_SIZE):
            created += self.store.add_associations(table, unique_ids[i : i + BULK_LINK_CHUNK_SIZE], tag.tag_id)
        logger.info(f"Linked tag {tag.name!r} to {created} new content item(s) in {table}")
        return created

    def remove_tag_from_content(self, content_id: str, tag_id: str, *, table: str | None = None) -> bool:
        """コンテンツから1つのタグの紐付けを外す（紐付けが無ければ何もしない）.

        Returns:
            関連付けを削除した場合 True
        """
        if not content_id or not tag_id:
            raise ValueError("content_id and tag_id are required")
        table = table or self.store.association_tables()[0]
        removed = self.store.delete_associations(table, [content_id], tag_id) > 0
        if removed:
            logger.debug(f"Unlinked tag {tag_id} from content {content_id} in {table}")
        return removed
