"""tag-engine CLI のユニットテスト."""

from pathlib import Path

import pytest

from tag_consolidation_engine.adapters.sqlite_store import SQLiteTagStore
from tag_consolidation_engine.cli import EXIT_CONFLICT, EXIT_ERROR, EXIT_OK, main


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    path = tmp_path / "tags.db"
    assert main(["--db", str(path), "init-db"]) == EXIT_OK
    return path


def _run(db_path: Path, *args: str) -> int:
    return main(["--db", str(db_path), "--scope", "org-1", "--log-level", "WARNING", *args])


class TestCli:
    """サブコマンドのテスト."""

    def test_create_and_list(self, db_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        assert _run(db_path, "create", "Cardiology", "--category", "topic") == EXIT_OK
        assert _run(db_path, "create", "Board Review", "--category", "source") == EXIT_OK
        capsys.readouterr()

        assert _run(db_path, "list") == EXIT_OK
        lines = capsys.readouterr().out.strip().splitlines()
        assert [line.split("\t")[1:] for line in lines] == [
            ["Board Review", "source", "blue"],
            ["Cardiology", "topic", "purple"],
        ]

    def test_duplicate_create_fails(self, db_path: Path) -> None:
        assert _run(db_path, "create", "Preeclampsia") == EXIT_OK
        assert _run(db_path, "create", "preeclampsia") == EXIT_ERROR

    def test_rename_conflict_then_merge(self, db_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        _run(db_path, "create", "Adrenal Glands")
        _run(db_path, "create", "adrenalgland")
        with SQLiteTagStore(db_path) as store:
            target = store.find_by_name("org-1", "Adrenal Glands")
            source = store.find_by_name("org-1", "adrenalgland")
        capsys.readouterr()

        assert _run(db_path, "rename", source.tag_id, "adrenal glands") == EXIT_CONFLICT
        assert f"tag-engine merge {target.tag_id} {source.tag_id}" in capsys.readouterr().out

        assert _run(db_path, "merge", target.tag_id, source.tag_id) == EXIT_OK
        with SQLiteTagStore(db_path) as store:
            assert [t.name for t in store.list_by_scope("org-1")] == ["Adrenal Glands"]

    def test_auto_format_report(self, db_path: Path, tmp_path: Path) -> None:
        _run(db_path, "create", "Heart Failure")
        _run(db_path, "create", "heart  failure")

        assert _run(db_path, "auto-format", "--report-dir", str(tmp_path / "reports")) == EXIT_OK
        assert (tmp_path / "reports" / "auto_format_skipped.csv").exists()

    def test_analyze_without_api_key(self, db_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        assert _run(db_path, "analyze") == EXIT_ERROR

    def test_bad_config(self, tmp_path: Path) -> None:
        config = tmp_path / "engine.yml"
        config.write_text("scope: 1\n", encoding="utf-8")
        assert main(["--config", str(config), "list"]) == EXIT_ERROR
