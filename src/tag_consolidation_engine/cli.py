"""tag-engine コマンドラインインターフェース."""

from __future__ import annotations

import argparse
import sys
from collections.abc import Sequence
from pathlib import Path

from loguru import logger

from tag_consolidation_engine.adapters.sqlite_store import SQLiteTagStore
from tag_consolidation_engine.config import EngineConfig, build_classifier, build_manager, load_config
from tag_consolidation_engine.core.categories import TagCategory, sort_tags_by_category
from tag_consolidation_engine.core.database import build_indexes, create_database
from tag_consolidation_engine.core.exceptions import TagEngineError
from tag_consolidation_engine.core.models import RenameConflict
from tag_consolidation_engine.core.reports import export_auto_format_report, export_merge_suggestions
from tag_consolidation_engine.manager import TagManager

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CONFLICT = 2

_CATEGORY_CHOICES = [c.value for c in TagCategory]


def _configure_logging(level: str) -> None:
    logger.remove()
    logger.add(sys.stderr, level=level.upper())


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="tag-engine", description="Tag identity and consolidation engine")
    p.add_argument("--config", type=Path, default=None, help="YAML config file")
    p.add_argument("--db", type=Path, default=None, help="SQLite DB path (overrides config)")
    p.add_argument("--scope", default=None, help="Tag scope (user/organization id; overrides config)")
    p.add_argument("--log-level", default="INFO", help="Log level (DEBUG, INFO, WARNING, ...)")

    sub = p.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create the database file and schema")

    c = sub.add_parser("create", help="Create a tag")
    c.add_argument("name")
    c.add_argument("--category", choices=_CATEGORY_CHOICES, default=TagCategory.CONCEPT.value)

    r = sub.add_parser("rename", help="Rename a tag (exits 2 on name conflict)")
    r.add_argument("tag_id")
    r.add_argument("new_name")

    m = sub.add_parser("merge", help="Merge source tags into a target tag")
    m.add_argument("target_id")
    m.add_argument("source_ids", nargs="+")

    s = sub.add_parser("set-category", help="Change a tag's category (and color)")
    s.add_argument("tag_id")
    s.add_argument("category", choices=_CATEGORY_CHOICES)

    a = sub.add_parser("auto-format", help="Title-case all tag names without creating duplicates")
    a.add_argument("--report-dir", type=Path, default=None, help="Write skipped tags as CSV here")

    z = sub.add_parser("analyze", help="Ask the AI classifier for consolidation suggestions")
    z.add_argument("--report-dir", type=Path, default=None, help="Write suggestions as CSV here")
    z.add_argument("--apply", action="store_true", help="Apply all suggestions as merges")

    sub.add_parser("list", help="List tags in the scope (Source, Topic, Concept order)")
    return p


def _run(args: argparse.Namespace, manager: TagManager, scope: str) -> int:
    if args.command == "create":
        tag = manager.create_tag(scope, args.name, args.category)
        print(f"{tag.tag_id}\t{tag.name}\t{tag.category.value}\t{tag.color}")

    elif args.command == "rename":
        result = manager.rename_tag(args.tag_id, args.new_name, scope=scope)
        if isinstance(result, RenameConflict):
            print(f"{result.reason} (id={result.existing_tag_id}); merge instead with:")
            print(f"  tag-engine merge {result.existing_tag_id} {result.tag_id}")
            return EXIT_CONFLICT
        print(f"{result.tag_id}\t{result.name}")

    elif args.command == "merge":
        merged = manager.merge_tags(args.source_ids, args.target_id, scope=scope)
        print(
            f"Merged {merged.deleted_tag_count} tag(s) into {merged.target_id}: "
            f"{merged.affected_association_count} association(s) transferred, "
            f"{merged.deduplicated_count} duplicate(s) removed"
        )

    elif args.command == "set-category":
        tag = manager.update_category(args.tag_id, args.category)
        print(f"{tag.tag_id}\t{tag.name}\t{tag.category.value}\t{tag.color}")

    elif args.command == "auto-format":
        result = manager.auto_format_all(scope)
        print(f"Updated {result.updated_count} tag(s), skipped {len(result.skipped)}")
        for skipped in result.skipped:
            print(f"  skipped {skipped.name!r}: {skipped.detail or skipped.reason}")
        if args.report_dir is not None:
            path = export_auto_format_report(result, args.report_dir)
            if path is not None:
                print(f"Wrote report: {path}")

    elif args.command == "analyze":
        groups = manager.analyze_consolidation(scope)
        for g in groups:
            print(f"{g.master_name} <- {', '.join(v.name for v in g.variations)}")
        if args.report_dir is not None:
            path = export_merge_suggestions(groups, args.report_dir)
            if path is not None:
                print(f"Wrote report: {path}")
        if args.apply and groups:
            applied = manager.apply_merge_groups(groups, scope=scope)
            print(f"Applied {len(applied.merged)} group(s), skipped {len(applied.skipped)}")

    elif args.command == "list":
        for tag in sort_tags_by_category(manager.list_tags(scope)):
            print(f"{tag.tag_id}\t{tag.name}\t{tag.category.value}\t{tag.color}")

    return EXIT_OK


def main(argv: Sequence[str] | None = None) -> int:
    """CLI エントリポイント."""
    args = _build_parser().parse_args(argv)
    _configure_logging(args.log_level)

    try:
        config: EngineConfig = load_config(args.config)
    except (OSError, ValueError) as e:
        logger.error(f"Failed to load config: {e}")
        return EXIT_ERROR

    db_path = args.db or config.database
    scope = args.scope or config.scope

    if args.command == "init-db":
        # 既存DBはファイルに触れず、インデックスだけ揃える
        create_database(db_path)
        build_indexes(db_path)
        print(f"Database ready: {db_path}")
        return EXIT_OK

    classifier = build_classifier(config) if args.command == "analyze" else None
    store = SQLiteTagStore(db_path)
    try:
        manager = build_manager(store, config, classifier)
        return _run(args, manager, scope)
    except TagEngineError as e:
        logger.error(e.reason)
        return EXIT_ERROR
    finally:
        store.close()
        if classifier is not None:
            classifier.close()


if __name__ == "__main__":
    sys.exit(main())
