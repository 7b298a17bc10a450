"""直近N行を保持するリングバッファ。"""

from __future__ import annotations

from collections import deque
from typing import Deque, List


class HistoryBuffer:
    """
    固定容量のFIFOリング。

    満杯時は最古の行を捨ててから追加する（deque(maxlen) に任せる）。
    容量0は保持なし（ライブ配信のみ）を意味する。
    """

    def __init__(self, capacity: int) -> None:
        if capacity < 0:
            raise ValueError(f"history capacity must be >= 0 (got {capacity})")
        self._capacity = int(capacity)
        self._lines: Deque[str] = deque(maxlen=self._capacity)

    @property
    def capacity(self) -> int:
        return self._capacity

    def append(self, line: str) -> None:
        self._lines.append(line)

    def snapshot(self) -> List[str]:
        """現在の内容を到着順で返す（内部状態は変更しない）。"""
        return list(self._lines)

    def __len__(self) -> int:
        return len(self._lines)
