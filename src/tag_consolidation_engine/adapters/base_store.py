"""タグストア（永続化層）の抽象基底クラス.

オーケストレーター（TagManager）はこのインターフェースだけに依存し、
具体的なストアは呼び出し側が生成して注入する。

関連付けテーブルは名前で指定する。どのテーブルが「旧」かはストア実装だけが知っていて、
コア側は ``association_tables()`` の順に同じ処理を繰り返すだけにする。
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence

from tag_consolidation_engine.core.categories import TagCategory
from tag_consolidation_engine.core.models import Tag


class BaseTagStore(ABC):
    """タグストアの基底クラス.

    実装上の約束:
        - 各メソッドはそれ自体が1つの原子的な単位（途中で中断されても、コミット済みの分は整合している）
        - 同一スコープ内の正規化名の一意性を（ベストエフォートで）制約として持つ
        - 一意制約違反は DuplicateNameError、存在しないIDは NotFoundError、その他の障害は TagStoreError
    """

    @abstractmethod
    def get(self, tag_id: str) -> Tag | None:
        """タグIDでタグを取得する（無ければ None）."""
        ...

    @abstractmethod
    def get_many(self, tag_ids: Sequence[str]) -> list[Tag]:
        """複数のタグIDでまとめて取得する（見つかったものだけを返す）."""
        ...

    @abstractmethod
    def find_by_name(self, scope: str, name: str) -> Tag | None:
        """スコープ内で名前（大文字小文字・前後空白無視）が一致するタグを返す."""
        ...

    @abstractmethod
    def insert(self, tag: Tag) -> Tag:
        """タグを追加する.

        Raises:
            DuplicateNameError: 同一スコープに同じ正規化名のタグがある場合
        """
        ...

    @abstractmethod
    def update(
        self,
        tag_id: str,
        *,
        name: str | None = None,
        category: TagCategory | None = None,
        color: str | None = None,
    ) -> Tag:
        """指定フィールドだけを更新する.

        Raises:
            NotFoundError: タグが存在しない場合
            DuplicateNameError: 新しい名前が一意制約に違反する場合
            ValueError: category を color 無しで更新しようとした場合
        """
        ...

    @abstractmethod
    def delete(self, tag_id: str) -> None:
        """タグを削除する（関連付けはカスケード削除）.

        Raises:
            NotFoundError: タグが存在しない場合
        """
        ...

    @abstractmethod
    def list_by_scope(self, scope: str) -> list[Tag]:
        """スコープ内の全タグを名前順で返す."""
        ...

    @abstractmethod
    def association_tables(self) -> list[str]:
        """関連付けテーブル名の一覧（処理順）."""
        ...

    @abstractmethod
    def find_associations_by_tag(self, table: str, tag_id: str) -> list[str]:
        """タグに紐づく content_id 一覧を返す."""
        ...

    @abstractmethod
    def find_tags_by_content(self, table: str, content_id: str) -> list[Tag]:
        """コンテンツに紐づくタグ一覧を名前順で返す."""
        ...

    @abstractmethod
    def transfer_associations(
        self,
        table: str,
        content_ids: Sequence[str],
        from_tag_id: str,
        to_tag_id: str,
    ) -> int:
        """関連付けを from_tag_id から to_tag_id へ付け替え、付け替えた件数を返す.

        付け替え先に同じ content_id の行が既にある場合（並行書き込みとの競合）は、
        エラーにせず付け替え元の行を削除する（dedupe 扱い）。
        """
        ...

    @abstractmethod
    def delete_associations(self, table: str, content_ids: Sequence[str], tag_id: str) -> int:
        """指定タグ側の関連付け行を削除し、削除件数を返す."""
        ...

    @abstractmethod
    def add_associations(self, table: str, content_ids: Sequence[str], tag_id: str) -> int:
        """関連付けを冪等に追加し、新規に作成した件数を返す."""
        ...

    def close(self) -> None:  # noqa: B027
        """リソースを解放する（必要な実装だけがオーバーライドする）."""

    def __enter__(self) -> BaseTagStore:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()
