"""
livetail の例外定義

起動時に致命的なもの（SourceUnavailableError）と、
コンポーネント境界で握りつぶして処理を継続するものを区別する。
"""

from __future__ import annotations


class LivetailError(Exception):
    """livetail の例外基底クラス。"""


class SourceUnavailableError(LivetailError):
    """
    起動時にソースを開けなかった。

    配信できるものが無いため、プロセスは起動を中止する。
    """

    def __init__(self, source: str, reason: str) -> None:
        super().__init__(f"cannot open source '{source}': {reason}")
        self.source = source
        self.reason = reason


class AuthorizationRejected(LivetailError):
    """Observer Gate による接続拒否。"""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class ObserverDeliveryFailure(LivetailError):
    """購読者の送信先が壊れた（切断済み・滞留超過など）。"""
