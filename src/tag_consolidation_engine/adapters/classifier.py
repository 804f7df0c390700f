"""AI分類器（テキスト分類サービス）のアダプタ.

分類器はブラックボックスとして扱い、``classify(prompt, chunk) -> 生テキスト`` だけを契約とする。
応答の解析は core/consolidation.py 側の責務。
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence

import httpx
from loguru import logger

from tag_consolidation_engine.core.exceptions import ClassifierError, ClassifierParseError

DEFAULT_BASE_URL = "https://api.openai.com/v1"
DEFAULT_MODEL = "gpt-4o-mini"


class BaseClassifier(ABC):
    """分類器の基底クラス."""

    @abstractmethod
    def classify(self, prompt: str, chunk: Sequence[str]) -> str:
        """タグ名のチャンクを分類器に渡し、応答テキストを返す.

        Raises:
            ClassifierError: 通信失敗・HTTPエラー（分類器に到達できなかった）
            ClassifierParseError: 到達したが応答本文が使えない（非JSON・空応答）
        """
        ...

    def close(self) -> None:  # noqa: B027
        """リソースを解放する（必要な実装だけがオーバーライドする）."""


def build_user_message(chunk: Sequence[str]) -> str:
    return "Analyze these tags for duplicates, typos, and synonyms:\n\n" + "\n".join(chunk)


class OpenAIChatClassifier(BaseClassifier):
    """OpenAI 互換の Chat Completions エンドポイントを呼ぶ分類器.

    Args:
        api_key: APIキー
        base_url: エンドポイントのベースURL（``/chat/completions`` を付けて呼ぶ）
        model: モデル名
        temperature: サンプリング温度（統合提案は低め）
        timeout: 1リクエストのタイムアウト秒
        client: テスト用に差し替える httpx.Client（省略時は内部で生成）
    """

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = DEFAULT_BASE_URL,
        model: str = DEFAULT_MODEL,
        temperature: float = 0.1,
        timeout: float = 60.0,
        client: httpx.Client | None = None,
    ) -> None:
        if not api_key:
            raise ValueError("api_key is required")
        self.model = model
        self.temperature = temperature
        self._owns_client = client is None
        self._client = client or httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            headers={"Authorization": f"Bearer {api_key}"},
        )

    def classify(self, prompt: str, chunk: Sequence[str]) -> str:
        payload = {
            "model": self.model,
            "temperature": self.temperature,
            "response_format": {"type": "json_object"},
            "messages": [
                {"role": "system", "content": prompt},
                {"role": "user", "content": build_user_message(chunk)},
            ],
        }
        logger.debug(f"Calling classifier model={self.model} with {len(chunk)} tag(s)")

        try:
            response = self._client.post("/chat/completions", json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise ClassifierError(f"Classifier returned HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise ClassifierError(f"Classifier request failed: {e}") from e
        except ValueError as e:
            raise ClassifierParseError("classifier returned a non-JSON body") from e

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise ClassifierParseError("classifier response has no message content") from e

        if not isinstance(content, str) or not content.strip():
            raise ClassifierParseError("classifier returned empty content")
        return content

    def close(self) -> None:
        if self._owns_client:
            self._client.close()
