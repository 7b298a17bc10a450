"""
WebSocket用のセッション認可ユーティリティ

ハンドシェイクのCookieを Observer Gate で検証する。
認可失敗時は accept 前に WS_1008_POLICY_VIOLATION でクローズする。
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import WebSocket, status

from livetail.errors import AuthorizationRejected
from livetail.gate import ObserverGate


logger = logging.getLogger(__name__)


async def authorize_ws_session(websocket: WebSocket, gate: Optional[ObserverGate]) -> bool:
    """
    WebSocket接続のセッションCookieを検証する。

    gate が None（認可無効）なら常に許可する。
    """
    if gate is None:
        return True
    try:
        gate.check(websocket.headers.get("cookie"))
    except AuthorizationRejected as exc:
        # WebSocketはHTTPステータスを返せないため、認可失敗は規約違反としてcloseする
        logger.warning("websocket rejected: %s", exc.reason)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return False
    return True
