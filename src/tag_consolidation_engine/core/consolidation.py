"""AI統合提案の分割・解析・ID解決.

分類器の応答は信頼できない外部入力として扱う。
厳密なスキーマ（``{"groups": [{"master": str, "variations": [str, ...]}]}``）へ解析し、
検証に通らないエントリや既存タグへ解決できない名前は黙って捨てる。
"""

from __future__ import annotations

import json
import re
from collections.abc import Iterable, Iterator, Sequence

from .exceptions import ClassifierParseError
from .models import MergeGroup, SuggestedGroup, Tag, TagRef
from .normalize import normalize_name

# この件数未満なら1バッチで送る
SINGLE_BATCH_THRESHOLD = 200
# 分割が必要な場合の1バッチあたりの件数
BATCH_SIZE = 100

_JSON_BLOCK = re.compile(r"\{.*\}", re.DOTALL)

CONSOLIDATION_PROMPT = """You are a data cleanup assistant. Analyze the provided list of tags and identify groups that should be merged due to:
- Typos (e.g., "Adrenalgland" should be "Adrenal Glands")
- Synonyms (e.g., "OB" and "Obstetrics")
- Casing inconsistencies (e.g., "adrenal glands" and "Adrenal Glands")
- Spacing/punctuation issues (e.g., "Adrenal-gland" and "Adrenal Glands")

For each group, choose the most correct/canonical form as the "master" tag.
Only use tag names that appear in the provided list.

Return ONLY valid JSON in this exact format:
{
  "groups": [
    {
      "master": "Canonical Tag Name",
      "variations": ["typo1", "synonym1", "casing-variant"]
    }
  ]
}

If no duplicates/synonyms are found, return: {"groups": []}"""


def _chunked(seq: Sequence[str], size: int) -> Iterator[list[str]]:
    for i in range(0, len(seq), size):
        yield list(seq[i : i + size])


def batch_tags_for_analysis(
    names: Sequence[str],
    *,
    single_batch_threshold: int = SINGLE_BATCH_THRESHOLD,
    batch_size: int = BATCH_SIZE,
) -> list[list[str]]:
    """分類器のコンテキスト上限に収まるようタグ名を分割する.

    Examples:
        >>> batch_tags_for_analysis([])
        []
        >>> len(batch_tags_for_analysis([f"t{i}" for i in range(150)]))
        1
        >>> [len(b) for b in batch_tags_for_analysis([f"t{i}" for i in range(250)])]
        [100, 100, 50]
    """
    if batch_size <= 0:
        raise ValueError(f"batch_size must be positive: {batch_size}")
    if not names:
        return []
    if len(names) < single_batch_threshold:
        return [list(names)]
    return list(_chunked(names, batch_size))


def _strip_code_fence(text: str) -> str:
    text = text.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else text[3:]
    if text.endswith("```"):
        text = text[:-3]
    return text.strip()


def _load_json_object(text: str) -> object:
    text = _strip_code_fence(text)
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        # 前置き・後書きの説明文が混ざっている場合は最外の {...} を拾い直す
        match = _JSON_BLOCK.search(text)
        if match:
            try:
                return json.loads(match.group())
            except json.JSONDecodeError:
                pass
        raise ClassifierParseError(f"invalid JSON ({e.msg})") from e


def _coerce_group(entry: object) -> SuggestedGroup | None:
    if not isinstance(entry, dict):
        return None
    master = entry.get("master")
    variations = entry.get("variations")
    if not isinstance(master, str) or not master.strip():
        return None
    if not isinstance(variations, list) or not all(isinstance(v, str) for v in variations):
        return None
    cleaned = tuple(v.strip() for v in variations if v.strip())
    return SuggestedGroup(master=master.strip(), variations=cleaned)


def parse_consolidation_response(text: str | None) -> list[SuggestedGroup]:
    """分類器の応答テキストを SuggestedGroup のリストへ解析する.

    Raises:
        ClassifierParseError: 空応答、JSONでない、または ``groups`` 配列を持つオブジェクトでない場合

    Note:
        ``groups`` 内の個々のエントリがスキーマ違反の場合は、そのエントリだけを捨てる。
    """
    if text is None or not text.strip():
        raise ClassifierParseError("empty response")

    data = _load_json_object(text)
    if not isinstance(data, dict):
        raise ClassifierParseError(f"expected a JSON object, got {type(data).__name__}")

    raw_groups = data.get("groups")
    if not isinstance(raw_groups, list):
        raise ClassifierParseError("missing 'groups' array")

    groups: list[SuggestedGroup] = []
    for entry in raw_groups:
        group = _coerce_group(entry)
        if group is not None:
            groups.append(group)
    return groups


def build_tag_lookup(tags: Iterable[Tag | TagRef]) -> dict[str, TagRef]:
    """正規化キー → TagRef の辞書を作る（名前解決を O(1) にするため、スコープ全体で1回だけ作る）."""
    lookup: dict[str, TagRef] = {}
    for tag in tags:
        ref = tag.ref if isinstance(tag, Tag) else tag
        lookup.setdefault(normalize_name(ref.name), ref)
    return lookup


def resolve_tag_suggestions(
    groups: Iterable[SuggestedGroup],
    lookup: dict[str, TagRef],
) -> list[MergeGroup]:
    """提案グループの名前を既存タグIDへ解決する.

    - master が解決できないグループは捨てる
    - 解決できない variation、master 自身に解決される variation、重複 variation は捨てる
    - variation が1件も残らないグループは捨てる
    """
    resolved: list[MergeGroup] = []
    for group in groups:
        master = lookup.get(normalize_name(group.master))
        if master is None:
            continue

        variations: list[TagRef] = []
        seen: set[str] = {master.tag_id}
        for name in group.variations:
            ref = lookup.get(normalize_name(name))
            if ref is None or ref.tag_id in seen:
                continue
            seen.add(ref.tag_id)
            variations.append(ref)

        if variations:
            resolved.append(
                MergeGroup(master_id=master.tag_id, master_name=master.name, variations=tuple(variations))
            )
    return resolved
