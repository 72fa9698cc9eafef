"""
文字列正規化ユーティリティ。

楽曲名・別名・検索クエリの表記揺れを吸収し、楽曲検索の照合キーとして利用する。
楽曲IDは正規化しない(IDは完全一致でのみ照合する)。
"""

from __future__ import annotations

import re
import unicodedata


_HYPHEN_CHARS = [
    "‐", "‒", "–", "—", "―",
    "−", "ｰ", "〜", "～",
]

_QUOTE_MAP = {
    "“": '"',
    "”": '"',
    "’": "'",
    "‘": "'",
    "「": '"',
    "」": '"',
}


def normalize_name(s: str) -> str:
    """
    楽曲名・別名・検索クエリを照合用に正規化して返す。

    正規化内容:
    - Unicode正規化 (NFKC)
    - 改行/タブをスペースへ置換
    - 引用符・ハイフン類の統一
    - trim と連続空白の単一化
    - casefold による大文字小文字の同一視

    Args:
        s: 入力文字列。

    Returns:
        正規化済み文字列。入力が None の場合は空文字を返す。
    """
    if s is None:
        return ""

    s = unicodedata.normalize("NFKC", s)
    s = s.replace("\n", " ").replace("\r", " ").replace("\t", " ")

    for k, v in _QUOTE_MAP.items():
        s = s.replace(k, v)

    for c in _HYPHEN_CHARS:
        s = s.replace(c, "-")

    s = re.sub(r"\s+", " ", s.strip())
    return s.casefold()


def strip_record_suffix(key: str) -> str:
    """
    存档の成績キーから楽曲IDを取り出す。

    成績キーは通常 "楽曲ID.0" の形式で保存されているため末尾の ".0" を除く。
    ".0" を持たない旧形式のキーは "楽曲IDLv..." のように難易度表記が続くので、
    最後の "Lv" より前を楽曲IDとする。
    """
    if key.endswith(".0"):
        return key[:-2]
    if "Lv" in key:
        return key[: key.rfind("Lv")]
    return key
