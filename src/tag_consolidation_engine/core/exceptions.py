"""Tag consolidation engine exceptions.

タグ操作で発生する失敗種別をカスタム例外として定義します。
全ての例外は ``reason``（画面にそのまま出せる英語の説明文）を持ちます。

リネーム時の名前衝突は例外ではなく ``RenameConflict`` を戻り値として返すため、
ここには含まれません。
"""

from __future__ import annotations

from collections.abc import Iterable


class TagEngineError(Exception):
    """タグエンジン例外の基底クラス.

    Attributes:
        reason: 呼び出し側へそのまま表示できる説明文
    """

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


class DuplicateNameError(TagEngineError):
    """同一スコープ内に大文字小文字を無視して同名のタグが既に存在する."""

    def __init__(self, scope: str, name: str) -> None:
        self.scope = scope
        self.name = name
        super().__init__(f'Tag "{name}" already exists')


class NotFoundError(TagEngineError):
    """タグIDがスコープ内で解決できない.

    Attributes:
        tag_ids: 見つからなかったタグIDのタプル
    """

    def __init__(self, tag_ids: str | Iterable[str]) -> None:
        if isinstance(tag_ids, str):
            tag_ids = [tag_ids]
        self.tag_ids = tuple(tag_ids)
        if len(self.tag_ids) == 1:
            reason = f"Tag not found: {self.tag_ids[0]}"
        else:
            reason = f"Tags not found: {', '.join(self.tag_ids)}"
        super().__init__(reason)


class EmptyNameError(TagEngineError):
    """trim 後のタグ名が空."""

    def __init__(self) -> None:
        super().__init__("Tag name cannot be empty")


class SelfMergeError(TagEngineError):
    """マージ元にマージ先自身が含まれている."""

    def __init__(self, tag_id: str) -> None:
        self.tag_id = tag_id
        super().__init__("Cannot merge a tag into itself")


class NoSourceTagsError(TagEngineError):
    """マージ元タグが1件も指定されていない."""

    def __init__(self) -> None:
        super().__init__("No source tags selected")


class TagStoreError(TagEngineError):
    """ストア側のインフラ障害（SQLite エラー等）."""


class ClassifierError(TagEngineError):
    """分類器（AI）への1チャンク分の呼び出し失敗（通信・HTTP）."""


class ClassifierUnavailableError(TagEngineError):
    """分類器に1チャンクも到達できなかった、または未設定."""

    def __init__(self, reason: str = "AI classifier is unavailable") -> None:
        super().__init__(reason)


class ClassifierParseError(TagEngineError):
    """分類器の応答が期待する構造化出力（groups JSON）になっていない.

    チャンク単位でログ出力してスキップされるため、呼び出し側まで伝播しない。
    """

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(f"Failed to parse AI response: {detail}")
