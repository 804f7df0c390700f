"""タグ名の正規化.

設計方針:
    - ``normalize_name`` は比較専用のキーを作るだけで、表示名は一切書き換えない
    - 表示名の整形（Title Case）は ``to_title_case`` が担い、自動整形パスのデフォルト整形関数になる
    - どの関数も空/空白のみの入力で例外を出さず、空文字を返す
"""

from __future__ import annotations

import re

_WHITESPACE_RUN = re.compile(r"\s+")


def normalize_name(name: str) -> str:
    """比較用キー（前後空白除去 + 小文字化）を返す.

    Examples:
        >>> normalize_name("  Preeclampsia ")
        'preeclampsia'
        >>> normalize_name("Adrenal Glands")
        'adrenal glands'
    """
    return name.strip().lower()


def is_blank(name: str | None) -> bool:
    """None / 空文字 / 空白のみ なら True."""
    return name is None or not name.strip()


def to_title_case(name: str) -> str:
    """タグ名を Title Case に整形する.

    - 前後の空白を除去し、連続空白を1つに畳む
    - 各単語の先頭を大文字、残りを小文字にする
    - 空白のみの入力は空文字

    Examples:
        >>> to_title_case("pelvic floor")
        'Pelvic Floor'
        >>> to_title_case("  multiple   spaces  ")
        'Multiple Spaces'
        >>> to_title_case("ALREADY CAPS")
        'Already Caps'
        >>> to_title_case("   ")
        ''
    """
    collapsed = _WHITESPACE_RUN.sub(" ", name.strip())
    if not collapsed:
        return ""
    return " ".join(word[:1].upper() + word[1:].lower() for word in collapsed.split(" "))
