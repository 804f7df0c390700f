"""SQLiteTagStore のユニットテスト."""

import threading
from pathlib import Path

import pytest

from tag_consolidation_engine.adapters.sqlite_store import SQLiteTagStore
from tag_consolidation_engine.core.categories import TagCategory
from tag_consolidation_engine.core.exceptions import DuplicateNameError, NotFoundError, TagStoreError
from tag_consolidation_engine.core.models import Tag

CURRENT = "CARD_TEMPLATE_TAGS"
LEGACY = "CARD_TAGS"


@pytest.fixture
def store(tmp_path: Path) -> SQLiteTagStore:
    s = SQLiteTagStore(tmp_path / "tags.db")
    yield s
    s.close()


def _insert(store: SQLiteTagStore, tag_id: str, name: str, scope: str = "org-1") -> Tag:
    return store.insert(Tag.build(tag_id, scope, name, TagCategory.CONCEPT))


class TestTags:
    """タグ本体の操作."""

    def test_insert_and_get(self, store: SQLiteTagStore) -> None:
        tag = _insert(store, "t1", "Renal")
        assert store.get("t1") == tag
        assert store.get("missing") is None

    def test_find_by_name_case_insensitive(self, store: SQLiteTagStore) -> None:
        _insert(store, "t1", "Preeclampsia")
        assert store.find_by_name("org-1", "  preeclampsia ").tag_id == "t1"
        assert store.find_by_name("org-2", "preeclampsia") is None

    def test_insert_duplicate(self, store: SQLiteTagStore) -> None:
        """同一スコープの正規化名重複は DuplicateNameError."""
        _insert(store, "t1", "Preeclampsia")
        with pytest.raises(DuplicateNameError):
            _insert(store, "t2", "PREECLAMPSIA")
        # 別スコープは可
        _insert(store, "t3", "preeclampsia", scope="org-2")

    def test_get_many_keeps_order(self, store: SQLiteTagStore) -> None:
        _insert(store, "a", "A")
        _insert(store, "b", "B")
        assert [t.tag_id for t in store.get_many(["b", "missing", "a", "b"])] == ["b", "a"]

    def test_update_name(self, store: SQLiteTagStore) -> None:
        _insert(store, "t1", "renal")
        updated = store.update("t1", name="Renal")
        assert updated.name == "Renal"
        assert store.find_by_name("org-1", "RENAL").tag_id == "t1"

    def test_update_category_and_color(self, store: SQLiteTagStore) -> None:
        _insert(store, "t1", "Renal")
        updated = store.update("t1", category=TagCategory.TOPIC, color="purple")
        assert updated.category is TagCategory.TOPIC
        assert updated.color == "purple"

    def test_update_category_without_color(self, store: SQLiteTagStore) -> None:
        _insert(store, "t1", "Renal")
        with pytest.raises(ValueError):
            store.update("t1", category=TagCategory.TOPIC)

    def test_update_mismatched_color_rejected(self, store: SQLiteTagStore) -> None:
        """カテゴリと色の不一致は DB 制約で弾かれる."""
        _insert(store, "t1", "Renal")
        with pytest.raises(TagStoreError):
            store.update("t1", category=TagCategory.TOPIC, color="green")

    def test_update_duplicate_name(self, store: SQLiteTagStore) -> None:
        _insert(store, "t1", "Renal")
        _insert(store, "t2", "Cardio")
        with pytest.raises(DuplicateNameError):
            store.update("t2", name="renal")

    def test_update_missing(self, store: SQLiteTagStore) -> None:
        with pytest.raises(NotFoundError):
            store.update("missing", name="x")
        with pytest.raises(NotFoundError):
            store.update("missing")

    def test_delete(self, store: SQLiteTagStore) -> None:
        _insert(store, "t1", "Renal")
        store.add_associations(CURRENT, ["c1"], "t1")
        store.delete("t1")
        assert store.get("t1") is None
        assert store.find_associations_by_tag(CURRENT, "t1") == []
        with pytest.raises(NotFoundError):
            store.delete("t1")

    def test_list_by_scope(self, store: SQLiteTagStore) -> None:
        _insert(store, "2", "b")
        _insert(store, "1", "a")
        _insert(store, "3", "c", scope="org-2")
        assert [t.name for t in store.list_by_scope("org-1")] == ["a", "b"]

    def test_memory_database(self) -> None:
        with SQLiteTagStore(":memory:") as s:
            _insert(s, "t1", "Renal")
            assert s.get("t1") is not None


class TestAssociations:
    """関連付けの操作."""

    def test_tables(self, store: SQLiteTagStore) -> None:
        assert store.association_tables() == [CURRENT, LEGACY]

    def test_unknown_table(self, store: SQLiteTagStore) -> None:
        with pytest.raises(ValueError):
            store.find_associations_by_tag("NOPE", "t1")

    def test_add_idempotent(self, store: SQLiteTagStore) -> None:
        """同じ関連付けを2回追加しても行は増えない."""
        _insert(store, "t1", "Renal")
        assert store.add_associations(LEGACY, ["c1", "c2", "c1"], "t1") == 2
        assert store.add_associations(LEGACY, ["c2", "c3"], "t1") == 1
        assert store.find_associations_by_tag(LEGACY, "t1") == ["c1", "c2", "c3"]

    def test_add_to_missing_tag(self, store: SQLiteTagStore) -> None:
        with pytest.raises(NotFoundError):
            store.add_associations(CURRENT, ["c1"], "missing")

    def test_transfer(self, store: SQLiteTagStore) -> None:
        _insert(store, "src", "adrenalgland")
        _insert(store, "dst", "Adrenal Glands")
        store.add_associations(CURRENT, ["c1", "c2"], "src")

        assert store.transfer_associations(CURRENT, ["c1", "c2"], "src", "dst") == 2
        assert store.find_associations_by_tag(CURRENT, "dst") == ["c1", "c2"]
        assert store.find_associations_by_tag(CURRENT, "src") == []

    def test_transfer_race_becomes_dedupe(self, store: SQLiteTagStore) -> None:
        """付け替え先に同じ行が既にあれば、エラーにせずマージ元側を削除する."""
        _insert(store, "src", "adrenalgland")
        _insert(store, "dst", "Adrenal Glands")
        store.add_associations(CURRENT, ["c1", "c2"], "src")
        # 計画後に別の書き込みが c2 をマージ先へ付けた想定
        store.add_associations(CURRENT, ["c2"], "dst")

        assert store.transfer_associations(CURRENT, ["c1", "c2"], "src", "dst") == 1
        assert store.find_associations_by_tag(CURRENT, "dst") == ["c1", "c2"]
        assert store.find_associations_by_tag(CURRENT, "src") == []

    def test_delete_associations(self, store: SQLiteTagStore) -> None:
        _insert(store, "t1", "Renal")
        store.add_associations(LEGACY, ["c1", "c2"], "t1")
        assert store.delete_associations(LEGACY, ["c1", "missing"], "t1") == 1
        assert store.find_associations_by_tag(LEGACY, "t1") == ["c2"]

    def test_empty_inputs(self, store: SQLiteTagStore) -> None:
        assert store.transfer_associations(CURRENT, [], "a", "b") == 0
        assert store.delete_associations(CURRENT, [], "a") == 0
        assert store.add_associations(CURRENT, [], "a") == 0

    def test_large_in_list_is_chunked(self, store: SQLiteTagStore) -> None:
        """SQLite の変数上限を超える件数でも処理できる."""
        _insert(store, "src", "a")
        _insert(store, "dst", "b")
        content_ids = [f"c{i:05d}" for i in range(1200)]
        store.add_associations(CURRENT, content_ids, "src")

        assert store.transfer_associations(CURRENT, content_ids, "src", "dst") == 1200
        assert len(store.find_associations_by_tag(CURRENT, "dst")) == 1200

    def test_threaded_access(self, store: SQLiteTagStore) -> None:
        """複数スレッドからの書き込みが直列化される."""
        _insert(store, "t1", "Renal")

        def worker(offset: int) -> None:
            store.add_associations(CURRENT, [f"c{offset}-{i}" for i in range(50)], "t1")

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(store.find_associations_by_tag(CURRENT, "t1")) == 200

    def test_find_tags_by_content(self, store: SQLiteTagStore) -> None:
        """テーブルごとにコンテンツのタグを名前順で返す."""
        _insert(store, "t1", "Renal")
        _insert(store, "t2", "Nephron")
        _insert(store, "t3", "Cardio")
        store.add_associations(CURRENT, ["c1"], "t1")
        store.add_associations(CURRENT, ["c1"], "t2")
        store.add_associations(LEGACY, ["c1"], "t3")

        assert [t.tag_id for t in store.find_tags_by_content(CURRENT, "c1")] == ["t2", "t1"]
        assert [t.name for t in store.find_tags_by_content(LEGACY, "c1")] == ["Cardio"]
        assert store.find_tags_by_content(CURRENT, "missing") == []
