"""タグ名リストの重複排除とマージ計画.

- 取り込み時のタグ名リスト統合（大文字小文字・前後空白を無視した重複排除）
- マージ元/マージ先の関連付け集合から transfer / dedupe を求める差分計算
- 自動整形（Title Case 化）で新たな重複を作らないための衝突判定

ここの関数はストアに触れない純粋関数で、スレッドから同時に呼んでも安全です。
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence

from loguru import logger

from .models import AutoFormatPlan, AutoFormatUpdate, MergePlan, SkippedTag, Tag
from .normalize import normalize_name

SKIP_EXISTING_COLLISION = "existing collision"
SKIP_FORMATTED_COLLISION = "collision after formatting"
SKIP_EMPTY_AFTER_FORMAT = "empty after formatting"


def _append_unique(result: list[str], seen: set[str], names: Iterable[str]) -> None:
    for name in names:
        trimmed = name.strip()
        if not trimmed:
            continue
        key = normalize_name(trimmed)
        if key in seen:
            continue
        seen.add(key)
        result.append(trimmed)


def merge_tag_lists(primary: Sequence[str], secondary: Sequence[str]) -> list[str]:
    """2つのタグ名リストを重複排除しながら統合する.

    primary（ユーザー/セッション側）を先に、secondary（AI抽出側）を後に走査し、
    正規化キーが未出現のものだけを追加する。衝突時は先に出現した表記が残る。

    Args:
        primary: 優先するタグ名リスト
        secondary: 追加候補のタグ名リスト

    Returns:
        trim 済み・正規化キーが一意なタグ名リスト（空/空白のみの要素は除外）

    Examples:
        >>> merge_tag_lists(["Preeclampsia", "OB"], ["preeclampsia", "Pre-eclampsia"])
        ['Preeclampsia', 'OB', 'Pre-eclampsia']
        >>> merge_tag_lists(["  ", "\\t"], ["   ", "\\n"])
        []
    """
    result: list[str] = []
    seen: set[str] = set()
    _append_unique(result, seen, primary)
    _append_unique(result, seen, secondary)
    return result


def deduplicate_tags(names: Sequence[str]) -> list[str]:
    """単一リストの重複排除（最初の出現を残す、空要素は除外）."""
    result: list[str] = []
    _append_unique(result, set(), names)
    return result


def has_duplicate(list_a: Sequence[str], list_b: Sequence[str]) -> bool:
    """2つのリストに正規化キーが共通する要素があれば True（順序に依存しない対称な判定）."""
    keys_a = {normalize_name(n) for n in list_a if n.strip()}
    return any(normalize_name(n) in keys_a for n in list_b if n.strip())


def has_internal_duplicates(names: Sequence[str]) -> bool:
    """単一リスト内に正規化キーの重複があれば True."""
    seen: set[str] = set()
    for name in names:
        key = normalize_name(name)
        if key in seen:
            return True
        seen.add(key)
    return False


def plan_merge(
    source_associations: Iterable[str],
    target_associations: Iterable[str],
) -> MergePlan:
    """マージ元の関連付けを transfer / dedupe に振り分ける.

    - マージ先に無い content_id → transfer（マージ先へ付け替え）
    - マージ先に既にある content_id → dedupe（マージ元側の行を削除）

    入力順を保ち、マージ元側の重複 content_id は1つに畳む。

    Examples:
        >>> plan = plan_merge(["c1", "c2", "c3"], ["c3", "c4"])
        >>> plan.transfer, plan.dedupe
        (('c1', 'c2'), ('c3',))
    """
    covered = set(target_associations)
    transfer: list[str] = []
    dedupe: list[str] = []
    seen: set[str] = set()
    for content_id in source_associations:
        if content_id in seen:
            continue
        seen.add(content_id)
        if content_id in covered:
            dedupe.append(content_id)
        else:
            transfer.append(content_id)
    return MergePlan(transfer=tuple(transfer), dedupe=tuple(dedupe))


def plan_multi_merge(
    sources: Sequence[tuple[str, Sequence[str]]],
    target_associations: Iterable[str],
) -> list[tuple[str, MergePlan]]:
    """複数のマージ元を左から順に計画する.

    先に処理したマージ元から transfer された content_id は「カバー済み」として
    後続のマージ元では dedupe に回るため、同じ content_id がマージ先へ二重に付け替えられない。

    Args:
        sources: (マージ元タグID, そのタグの content_id 一覧) のシーケンス（処理順）
        target_associations: マージ先タグの content_id 一覧

    Returns:
        (マージ元タグID, MergePlan) のリスト（入力順）
    """
    covered = set(target_associations)
    plans: list[tuple[str, MergePlan]] = []
    for source_id, associations in sources:
        plan = plan_merge(associations, covered)
        covered.update(plan.transfer)
        plans.append((source_id, plan))
    return plans


def plan_auto_format(
    tags: Sequence[Tag],
    formatter: Callable[[str], str],
) -> AutoFormatPlan:
    """自動整形の更新計画を作る（衝突する整形はスキップ）.

    処理順は (name, tag_id) 昇順で固定する。スキップ判定は処理順に依存するため、
    同じ入力からは何度実行しても同じ結果になる。

    判定:
        1. 整形結果が現在名と同じ → 何もしない（正規化キーは予約する）
        2. 整形結果が空 → "empty after formatting"
        3. 他タグの現在名と衝突 → "existing collision"
        4. この処理内で予約済みの名前と衝突 → "collision after formatting"
        5. それ以外 → 更新を計画し、正規化キーを予約する
    """
    ordered = sorted(tags, key=lambda t: (t.name, t.tag_id))

    # 現在名の正規化キー → そのキーを持つタグ（ストアの一意制約により通常は1件）
    current_owners: dict[str, list[Tag]] = {}
    for tag in ordered:
        current_owners.setdefault(normalize_name(tag.name), []).append(tag)

    reserved: dict[str, str] = {}  # 正規化キー → 予約したタグID
    updates: list[AutoFormatUpdate] = []
    skipped: list[SkippedTag] = []

    for tag in ordered:
        formatted = formatter(tag.name)

        if formatted == tag.name:
            reserved.setdefault(normalize_name(formatted), tag.tag_id)
            continue

        if not formatted.strip():
            skipped.append(
                SkippedTag(
                    tag_id=tag.tag_id,
                    name=tag.name,
                    reason=SKIP_EMPTY_AFTER_FORMAT,
                    detail="Formatted name is empty",
                )
            )
            continue

        key = normalize_name(formatted)
        others = [t for t in current_owners.get(key, []) if t.tag_id != tag.tag_id]
        if others:
            skipped.append(
                SkippedTag(
                    tag_id=tag.tag_id,
                    name=tag.name,
                    reason=SKIP_EXISTING_COLLISION,
                    detail=f'Would collide with existing tag "{others[0].name}"',
                )
            )
            continue

        if key in reserved and reserved[key] != tag.tag_id:
            skipped.append(
                SkippedTag(
                    tag_id=tag.tag_id,
                    name=tag.name,
                    reason=SKIP_FORMATTED_COLLISION,
                    detail=f'Would collide after formatting as "{formatted}"',
                )
            )
            continue

        reserved[key] = tag.tag_id
        updates.append(AutoFormatUpdate(tag_id=tag.tag_id, old_name=tag.name, new_name=formatted))

    if skipped:
        logger.debug(f"Auto-format plan skipped {len(skipped)} tag(s): {[s.name for s in skipped]}")

    return AutoFormatPlan(updates=tuple(updates), skipped=tuple(skipped))
