"""
バイト列 -> 行 の分割

Followerから届くチャンクは行境界に揃っていないため、
末尾の未完成行を保持しつつ行単位に切り出す。I/Oは行わない。
"""

from __future__ import annotations

import codecs
import re
from typing import AsyncIterable, AsyncIterator, List, Union

# \r\n を先に評価する（\r と \n の2行に割らない）
_TERMINATOR = re.compile(r"\r\n|\r|\n")


class SourceReset:
    """
    ソースの中身が差し替わった（truncate・ローテーション）ことを表す目印。

    これ以降のバイトは前のチャンクの続きではないため、
    保持中の未完成行はこの時点で確定させる。
    """

    def __repr__(self) -> str:
        return "SOURCE_RESET"


SOURCE_RESET = SourceReset()

Chunk = Union[bytes, SourceReset]


class LineSplitter:
    """
    チャンクを受け取り、完成した行だけを返す。

    保持する状態は未完成行1つとUTF-8デコーダの端数のみ。
    """

    def __init__(self, keep_empty_lines: bool = True) -> None:
        self.keep_empty_lines = keep_empty_lines
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._pending = ""

    @property
    def pending(self) -> str:
        return self._pending

    def feed(self, chunk: bytes) -> List[str]:
        """チャンクを追加し、確定した行を返す。"""
        text = self._pending + self._decoder.decode(chunk)
        # 末尾の \r は次のチャンク次第で \r\n になり得るので持ち越す
        carry = ""
        if text.endswith("\r"):
            text, carry = text[:-1], "\r"
        parts = _TERMINATOR.split(text)
        self._pending = parts[-1] + carry
        return self._filter(parts[:-1])

    def flush(self) -> List[str]:
        """ストリーム終端。未完成行が残っていれば1行として返す。"""
        text = self._pending + self._decoder.decode(b"", final=True)
        self._decoder.reset()
        self._pending = ""
        parts = _TERMINATOR.split(text)
        lines = parts[:-1]
        if parts[-1]:
            lines.append(parts[-1])
        return self._filter(lines)

    def _filter(self, lines: List[str]) -> List[str]:
        if self.keep_empty_lines:
            return lines
        return [line for line in lines if line]


async def split_lines(chunks: AsyncIterable[Chunk], keep_empty_lines: bool = True) -> AsyncIterator[str]:
    """
    バイトチャンクの非同期イテレータを行の非同期イテレータに変換する。

    SOURCE_RESET を受け取ったら未完成行を1行として確定させ、次のチャンクから読み直す。
    """
    splitter = LineSplitter(keep_empty_lines=keep_empty_lines)
    async for chunk in chunks:
        if isinstance(chunk, SourceReset):
            for line in splitter.flush():
                yield line
            continue
        for line in splitter.feed(chunk):
            yield line
    for line in splitter.flush():
        yield line
