"""エンジン設定（YAML）の読み込み.

設定ファイルの例::

    database: data/tags.db
    scope: default
    golden_topics:
      - Cardiology
      - Renal
    classifier:
      model: gpt-4o-mini
      api_key_env: OPENAI_API_KEY
      batch_size: 100

APIキーは設定ファイルには書かず、``api_key_env`` で指定した環境変数から読む。
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from loguru import logger

from tag_consolidation_engine.adapters.base_store import BaseTagStore
from tag_consolidation_engine.adapters.classifier import (
    DEFAULT_BASE_URL,
    DEFAULT_MODEL,
    BaseClassifier,
    OpenAIChatClassifier,
)
from tag_consolidation_engine.core.consolidation import BATCH_SIZE, SINGLE_BATCH_THRESHOLD
from tag_consolidation_engine.manager import TagManager
from tag_consolidation_engine.suggestions import SuggestionResolver

DEFAULT_DATABASE = "tags.db"
DEFAULT_SCOPE = "default"
DEFAULT_API_KEY_ENV = "OPENAI_API_KEY"


@dataclass(frozen=True)
class ClassifierConfig:
    base_url: str = DEFAULT_BASE_URL
    model: str = DEFAULT_MODEL
    temperature: float = 0.1
    timeout: float = 60.0
    api_key_env: str = DEFAULT_API_KEY_ENV
    single_batch_threshold: int = SINGLE_BATCH_THRESHOLD
    batch_size: int = BATCH_SIZE
    max_workers: int = 4

    @property
    def api_key(self) -> str | None:
        return os.environ.get(self.api_key_env) or None


@dataclass(frozen=True)
class EngineConfig:
    database: Path = Path(DEFAULT_DATABASE)
    scope: str = DEFAULT_SCOPE
    golden_topics: tuple[str, ...] = ()
    classifier: ClassifierConfig = field(default_factory=ClassifierConfig)


def _expect(section: str, key: str, value: Any, expected: type | tuple[type, ...]) -> Any:
    # bool は int のサブクラスなので数値項目では弾く
    if isinstance(value, bool) and bool not in (expected if isinstance(expected, tuple) else (expected,)):
        raise ValueError(f"{section}.{key} must not be a boolean")
    if not isinstance(value, expected):
        raise ValueError(f"{section}.{key} has invalid type {type(value).__name__}")
    return value


def _positive_int(section: str, key: str, value: Any) -> int:
    value = _expect(section, key, value, int)
    if value <= 0:
        raise ValueError(f"{section}.{key} must be positive")
    return value


def _load_classifier(raw: Any) -> ClassifierConfig:
    if raw is None:
        return ClassifierConfig()
    if not isinstance(raw, dict):
        raise ValueError("classifier must be a mapping")

    defaults = ClassifierConfig()
    return ClassifierConfig(
        base_url=_expect("classifier", "base_url", raw.get("base_url", defaults.base_url), str),
        model=_expect("classifier", "model", raw.get("model", defaults.model), str),
        temperature=float(
            _expect("classifier", "temperature", raw.get("temperature", defaults.temperature), (int, float))
        ),
        timeout=float(_expect("classifier", "timeout", raw.get("timeout", defaults.timeout), (int, float))),
        api_key_env=_expect("classifier", "api_key_env", raw.get("api_key_env", defaults.api_key_env), str),
        single_batch_threshold=_positive_int(
            "classifier",
            "single_batch_threshold",
            raw.get("single_batch_threshold", defaults.single_batch_threshold),
        ),
        batch_size=_positive_int("classifier", "batch_size", raw.get("batch_size", defaults.batch_size)),
        max_workers=_positive_int("classifier", "max_workers", raw.get("max_workers", defaults.max_workers)),
    )


def load_config(path: Path | str | None = None) -> EngineConfig:
    """YAML設定を読み込む（path が None ならデフォルト設定）.

    Raises:
        FileNotFoundError: 設定ファイルが存在しない
        ValueError: 値の型が不正
    """
    if path is None:
        return EngineConfig()

    path = Path(path)
    with open(path, encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"Config root must be a mapping: {path}")

    topics = raw.get("golden_topics") or []
    if not isinstance(topics, list) or not all(isinstance(t, str) for t in topics):
        raise ValueError("golden_topics must be a list of strings")

    config = EngineConfig(
        database=Path(_expect("root", "database", raw.get("database", DEFAULT_DATABASE), (str, Path))),
        scope=_expect("root", "scope", raw.get("scope", DEFAULT_SCOPE), str),
        golden_topics=tuple(t.strip() for t in topics if t.strip()),
        classifier=_load_classifier(raw.get("classifier")),
    )
    logger.info(f"Loaded config from {path} (scope={config.scope}, golden_topics={len(config.golden_topics)})")
    return config


def build_classifier(config: EngineConfig) -> OpenAIChatClassifier | None:
    """APIキーが設定されていれば分類器を作る（無ければ None）."""
    c = config.classifier
    api_key = c.api_key
    if api_key is None:
        logger.debug(f"No API key in ${c.api_key_env}; AI consolidation disabled")
        return None
    return OpenAIChatClassifier(
        api_key,
        base_url=c.base_url,
        model=c.model,
        temperature=c.temperature,
        timeout=c.timeout,
    )


def build_manager(
    store: BaseTagStore,
    config: EngineConfig,
    classifier: BaseClassifier | None = None,
) -> TagManager:
    """設定から TagManager を組み立てる.

    classifier が None なら AI統合提案は無効。ストアと分類器の close は呼び出し側の責務。
    """
    resolver = None
    if classifier is not None:
        resolver = SuggestionResolver(
            store,
            classifier,
            single_batch_threshold=config.classifier.single_batch_threshold,
            batch_size=config.classifier.batch_size,
            max_workers=config.classifier.max_workers,
        )
    return TagManager(store, suggestion_resolver=resolver, golden_topics=config.golden_topics)
