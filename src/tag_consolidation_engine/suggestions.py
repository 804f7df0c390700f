"""AI統合提案の取得（分類器呼び出しのファンアウト/ファンイン）.

スコープ内のタグ名をバッチに分け、各バッチを分類器へ並行に投げる。
結果は呼び出しスレッドで1か所に集めてから解析・ID解決するため、
共有状態を複数スレッドから触ることはない。

失敗の扱い:
    - あるチャンクが通信失敗 → ログを出してそのチャンクだけスキップ
    - あるチャンクの応答が空・非JSON・解析できない → 到達済みとして数え、そのチャンクだけスキップ
    - 全チャンクが通信失敗 → ClassifierUnavailableError
    - 提案ゼロ → 空リスト（正常）
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass

from loguru import logger

from tag_consolidation_engine.adapters.base_store import BaseTagStore
from tag_consolidation_engine.adapters.classifier import BaseClassifier
from tag_consolidation_engine.core.consolidation import (
    BATCH_SIZE,
    CONSOLIDATION_PROMPT,
    SINGLE_BATCH_THRESHOLD,
    batch_tags_for_analysis,
    build_tag_lookup,
    parse_consolidation_response,
    resolve_tag_suggestions,
)
from tag_consolidation_engine.core.exceptions import ClassifierParseError, ClassifierUnavailableError
from tag_consolidation_engine.core.models import MergeGroup


@dataclass(frozen=True)
class _ChunkOutcome:
    index: int
    text: str | None
    error: str | None
    reached: bool


class SuggestionResolver:
    """分類器の統合提案を MergeGroup へ解決する.

    Args:
        store: タグストア（スコープ内のタグ一覧と名前解決に使う）
        classifier: 分類器
        prompt: 分類器へ渡すシステムプロンプト
        single_batch_threshold: この件数未満なら1バッチで送る
        batch_size: 分割時の1バッチの件数
        max_workers: 並行呼び出し数
    """

    def __init__(
        self,
        store: BaseTagStore,
        classifier: BaseClassifier,
        *,
        prompt: str = CONSOLIDATION_PROMPT,
        single_batch_threshold: int = SINGLE_BATCH_THRESHOLD,
        batch_size: int = BATCH_SIZE,
        max_workers: int = 4,
    ) -> None:
        self.store = store
        self.classifier = classifier
        self.prompt = prompt
        self.single_batch_threshold = single_batch_threshold
        self.batch_size = batch_size
        self.max_workers = max(1, max_workers)

    def _call(self, index: int, chunk: list[str]) -> _ChunkOutcome:
        try:
            text = self.classifier.classify(self.prompt, chunk)
        except ClassifierParseError as e:
            return _ChunkOutcome(index=index, text=None, error=e.reason, reached=True)
        except Exception as e:  # チャンク単位で回収し、他チャンクは継続する
            return _ChunkOutcome(index=index, text=None, error=str(e) or type(e).__name__, reached=False)
        return _ChunkOutcome(index=index, text=text, error=None, reached=True)

    def _fan_out(self, batches: list[list[str]]) -> list[_ChunkOutcome]:
        outcomes: dict[int, _ChunkOutcome] = {}
        workers = min(self.max_workers, len(batches))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = [executor.submit(self._call, i, batch) for i, batch in enumerate(batches)]
            for future in as_completed(futures):
                outcome = future.result()
                outcomes[outcome.index] = outcome
        return [outcomes[i] for i in range(len(batches))]

    def analyze(self, scope: str) -> list[MergeGroup]:
        """スコープ内のタグを分析し、統合候補グループを返す.

        Raises:
            ClassifierUnavailableError: どのチャンクも分類器に到達できなかった場合
        """
        tags = self.store.list_by_scope(scope)
        if not tags:
            return []

        lookup = build_tag_lookup(tags)
        batches = batch_tags_for_analysis(
            [t.name for t in tags],
            single_batch_threshold=self.single_batch_threshold,
            batch_size=self.batch_size,
        )
        logger.info(f"Analyzing {len(tags)} tag(s) in {len(batches)} batch(es) for scope={scope}")

        outcomes = self._fan_out(batches)

        suggestions: list[MergeGroup] = []
        contacted = 0
        for outcome in outcomes:
            if not outcome.reached:
                logger.warning(f"Classifier batch {outcome.index + 1}/{len(batches)} failed: {outcome.error}")
                continue
            contacted += 1
            if outcome.error is not None:
                logger.warning(f"Classifier batch {outcome.index + 1}/{len(batches)} skipped: {outcome.error}")
                continue
            try:
                parsed = parse_consolidation_response(outcome.text)
            except ClassifierParseError as e:
                logger.warning(f"Classifier batch {outcome.index + 1}/{len(batches)} skipped: {e.reason}")
                continue

            resolved = resolve_tag_suggestions(parsed, lookup)
            dropped = len(parsed) - len(resolved)
            if dropped:
                logger.debug(f"Dropped {dropped} unresolvable suggestion group(s) from batch {outcome.index + 1}")
            suggestions.extend(resolved)

        if contacted == 0:
            raise ClassifierUnavailableError(f"AI classifier could not be reached for any of {len(batches)} batch(es)")

        logger.info(f"Found {len(suggestions)} consolidation suggestion(s) for scope={scope}")
        return suggestions
