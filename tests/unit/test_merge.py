"""Unit tests for merge planning and tag list deduplication."""

from tag_consolidation_engine.core.categories import TagCategory
from tag_consolidation_engine.core.merge import (
    SKIP_EMPTY_AFTER_FORMAT,
    SKIP_EXISTING_COLLISION,
    SKIP_FORMATTED_COLLISION,
    deduplicate_tags,
    has_duplicate,
    has_internal_duplicates,
    merge_tag_lists,
    plan_auto_format,
    plan_merge,
    plan_multi_merge,
)
from tag_consolidation_engine.core.models import Tag
from tag_consolidation_engine.core.normalize import normalize_name, to_title_case


def _tag(tag_id: str, name: str) -> Tag:
    return Tag.build(tag_id, "org-1", name, TagCategory.CONCEPT)


class TestMergeTagLists:
    """merge_tag_lists関数のテスト."""

    def test_primary_wins(self) -> None:
        """衝突時は primary 側の表記が残る."""
        result = merge_tag_lists(["Preeclampsia", "OB"], ["preeclampsia", "Pre-eclampsia"])
        assert result == ["Preeclampsia", "OB", "Pre-eclampsia"]

    def test_all_blank(self) -> None:
        """空白のみの要素は除外される."""
        assert merge_tag_lists(["  ", "\t"], ["   ", "\n"]) == []

    def test_trimmed(self) -> None:
        assert merge_tag_lists(["  Renal  "], ["  renal"]) == ["Renal"]

    def test_properties(self) -> None:
        """結果は正規化キーが一意で、入力のキーを全て含む."""
        primary = ["Heart", "heart ", "Lung", ""]
        secondary = ["LUNG", "Kidney", "kidney", "  "]
        result = merge_tag_lists(primary, secondary)

        keys = [normalize_name(n) for n in result]
        assert len(keys) == len(set(keys))
        assert set(keys) == {normalize_name(n) for n in primary + secondary if n.strip()}
        assert all(n == n.strip() and n for n in result)

    def test_idempotent(self) -> None:
        first = merge_tag_lists(["A", "b"], ["a", "C"])
        assert merge_tag_lists(first, []) == first
        assert merge_tag_lists(first, first) == first

    def test_deduplicate_single_list(self) -> None:
        assert deduplicate_tags(["Renal", "renal", " RENAL ", "Cardio"]) == ["Renal", "Cardio"]


class TestHasDuplicate:
    """重複判定のテスト."""

    def test_symmetric(self) -> None:
        a = ["Renal", "Cardio"]
        b = ["cardio "]
        assert has_duplicate(a, b) is True
        assert has_duplicate(b, a) is True

    def test_no_overlap(self) -> None:
        assert has_duplicate(["Renal"], ["Cardio"]) is False

    def test_blanks_ignored(self) -> None:
        """空要素同士は重複扱いしない."""
        assert has_duplicate(["", "  "], [" "]) is False

    def test_internal(self) -> None:
        assert has_internal_duplicates(["a", "B", "b"]) is True
        assert has_internal_duplicates(["a", "b"]) is False


class TestPlanMerge:
    """plan_merge / plan_multi_merge のテスト."""

    def test_partition(self) -> None:
        """マージ先に無いものは transfer、あるものは dedupe."""
        plan = plan_merge(["c1", "c2", "c3"], ["c3", "c4"])
        assert plan.transfer == ("c1", "c2")
        assert plan.dedupe == ("c3",)

    def test_duplicate_source_ids_collapsed(self) -> None:
        plan = plan_merge(["c1", "c1", "c2"], [])
        assert plan.transfer == ("c1", "c2")
        assert plan.dedupe == ()

    def test_empty(self) -> None:
        plan = plan_merge([], ["c1"])
        assert plan.transfer == ()
        assert plan.dedupe == ()

    def test_multi_merge_shared_content(self) -> None:
        """2つのマージ元が同じ content を持つ場合、2件目は dedupe に回る."""
        plans = plan_multi_merge([("s1", ["c1", "c2"]), ("s2", ["c2", "c3"])], ["c9"])
        assert [source_id for source_id, _ in plans] == ["s1", "s2"]
        assert plans[0][1].transfer == ("c1", "c2")
        assert plans[1][1].transfer == ("c3",)
        assert plans[1][1].dedupe == ("c2",)

    def test_multi_merge_exactly_once(self) -> None:
        """マージ後の集合は全入力の和集合で、各 content は1回だけ transfer される."""
        target = ["c1", "c2"]
        sources = [("s1", ["c1", "c3", "c4"]), ("s2", ["c4", "c5"]), ("s3", ["c2", "c5", "c6"])]
        plans = plan_multi_merge(sources, target)

        transferred = [cid for _, p in plans for cid in p.transfer]
        assert len(transferred) == len(set(transferred))
        assert set(target) | set(transferred) == {"c1", "c2", "c3", "c4", "c5", "c6"}
        # 各マージ元の行は transfer か dedupe のどちらかで全て処理される
        for (_, assocs), (_, plan) in zip(sources, plans):
            assert set(plan.transfer) | set(plan.dedupe) == set(assocs)


class TestPlanAutoFormat:
    """plan_auto_format関数のテスト."""

    def test_simple_update(self) -> None:
        plan = plan_auto_format([_tag("1", "pelvic floor")], to_title_case)
        assert [(u.tag_id, u.new_name) for u in plan.updates] == [("1", "Pelvic Floor")]
        assert plan.skipped == ()

    def test_unchanged_is_noop(self) -> None:
        plan = plan_auto_format([_tag("1", "Pelvic Floor")], to_title_case)
        assert plan.updates == ()
        assert plan.skipped == ()

    def test_existing_collision(self) -> None:
        """整形結果が他タグの現在名と衝突する場合はスキップ."""
        tags = [_tag("1", "heart failure"), _tag("2", "heart-failure")]
        plan = plan_auto_format(tags, lambda n: n.replace("-", " "))

        assert plan.updates == ()
        assert [s.tag_id for s in plan.skipped] == ["2"]
        assert plan.skipped[0].reason == SKIP_EXISTING_COLLISION
        assert plan.skipped[0].detail == 'Would collide with existing tag "heart failure"'

    def test_collision_after_formatting(self) -> None:
        """2つのタグが同じ整形結果になる場合、後の方はスキップ."""
        tags = [_tag("a", "heart   failure"), _tag("b", "heart  failure")]
        plan = plan_auto_format(tags, to_title_case)

        assert len(plan.updates) == 1
        assert len(plan.skipped) == 1
        assert plan.skipped[0].reason == SKIP_FORMATTED_COLLISION
        # (name, tag_id) 昇順で先に来る方が更新される
        assert plan.updates[0].tag_id == "a"

    def test_collision_with_unchanged_name(self) -> None:
        """整形不要なタグの名前も予約され、他タグはそこへ寄せられない."""
        tags = [_tag("1", "Heart Failure"), _tag("2", "heart  failure")]
        plan = plan_auto_format(tags, to_title_case)
        assert plan.updates == ()
        assert [s.tag_id for s in plan.skipped] == ["2"]

    def test_empty_after_formatting(self) -> None:
        plan = plan_auto_format([_tag("1", "x")], lambda n: "  ")
        assert plan.skipped[0].reason == SKIP_EMPTY_AFTER_FORMAT

    def test_no_new_duplicates(self) -> None:
        """正規化キーが一意な入力からは、適用後も一意なまま."""
        tags = [
            _tag("1", "adrenal glands"),
            _tag("2", "adrenal  glands"),
            _tag("3", "adrenal   glands"),
            _tag("4", "renal"),
            _tag("5", "Cardio"),
        ]
        plan = plan_auto_format(tags, to_title_case)

        final = {t.tag_id: t.name for t in tags}
        for u in plan.updates:
            final[u.tag_id] = u.new_name
        keys = [normalize_name(n) for n in final.values()]
        assert len(keys) == len(set(keys))
        assert final["1"] == "Adrenal Glands"
        assert final["4"] == "Renal"
        assert {s.tag_id for s in plan.skipped} == {"2", "3"}

    def test_deterministic(self) -> None:
        tags = [_tag("2", "b  b"), _tag("1", "B B"), _tag("3", "b b")]
        first = plan_auto_format(tags, to_title_case)
        second = plan_auto_format(list(reversed(tags)), to_title_case)
        assert first == second
