"""追跡対象ソースと、その集合（SourceSet）の定義。"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from typing import Iterable, Iterator, Tuple

STDIN_IDENTIFIER = "-"


@dataclass(frozen=True)
class Source:
    """追跡対象の入力1つ（ファイルパス、または "-" で標準入力）。"""

    identifier: str

    @property
    def is_stdin(self) -> bool:
        return self.identifier == STDIN_IDENTIFIER

    def __str__(self) -> str:
        return "<stdin>" if self.is_stdin else self.identifier


@dataclass(frozen=True)
class SourceSet:
    """
    1回の起動で与えられたソースの順序付き集合。

    fingerprint は識別子を空白で連結した文字列のmd5で、
    購読者の名前空間として使う（起動後は変化しない）。
    """

    sources: Tuple[Source, ...]
    fingerprint: str = field(init=False)

    def __post_init__(self) -> None:
        if not self.sources:
            raise ValueError("source set must contain at least one source")
        joined = " ".join(s.identifier for s in self.sources)
        object.__setattr__(self, "fingerprint", hashlib.md5(joined.encode("utf-8")).hexdigest())

    @classmethod
    def from_identifiers(cls, identifiers: Iterable[str]) -> "SourceSet":
        return cls(tuple(Source(str(i)) for i in identifiers))

    @property
    def label(self) -> str:
        """表示用（識別子を空白区切りで連結したもの）。"""
        return " ".join(s.identifier for s in self.sources)

    def __iter__(self) -> Iterator[Source]:
        return iter(self.sources)

    def __len__(self) -> int:
        return len(self.sources)
