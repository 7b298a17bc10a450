"""
WebSocketによる行ストリーミングAPI

名前空間（SourceSetのfingerprint）ごとに Hub へ購読者として登録し、
履歴のリプレイに続けてライブの行を配信する。
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status

from livetail.api.ws_auth import authorize_ws_session
from livetail.config import Config
from livetail.schemas import (
    LINE_EVENT,
    OPTIONS_HIDE_TOPBAR_EVENT,
    OPTIONS_HIGHLIGHT_CONFIG_EVENT,
    OPTIONS_LINES_EVENT,
    OPTIONS_NO_INDENT_EVENT,
    serialize_event,
)


router = APIRouter(tags=["stream"])
logger = logging.getLogger(__name__)


def build_option_events(config: Config, highlight_config: Optional[Dict[str, Any]]) -> List[str]:
    """接続直後に送るUIオプション通知を組み立てる。"""
    payloads = [serialize_event(OPTIONS_LINES_EVENT, config.ui_lines)]
    if config.ui_hide_topbar:
        payloads.append(serialize_event(OPTIONS_HIDE_TOPBAR_EVENT))
    if not config.ui_indent:
        payloads.append(serialize_event(OPTIONS_NO_INDENT_EVENT))
    if config.ui_highlight and highlight_config is not None:
        payloads.append(serialize_event(OPTIONS_HIGHLIGHT_CONFIG_EVENT, highlight_config))
    return payloads


@router.websocket("/ws/{namespace}")
async def stream_lines(websocket: WebSocket, namespace: str) -> None:
    """
    追跡中の行をWebSocketでストリーミング配信する。

    認可後に接続を受け入れ、UIオプション、履歴、ライブの順に送る。
    切断時は自動で購読を解除する。Hub側から外された場合はサーバから接続を閉じる。
    """
    state = websocket.app.state
    if not await authorize_ws_session(websocket, state.gate):
        return

    hub = state.registry.get(namespace)
    if hub is None:
        logger.warning("websocket rejected: unknown namespace %s", namespace)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    for payload in build_option_events(state.config, state.highlight_config):
        await websocket.send_text(payload)

    async def send_line(line: str) -> None:
        await websocket.send_text(serialize_event(LINE_EVENT, line))

    observer = hub.attach(send_line)
    receiver = asyncio.ensure_future(_wait_for_disconnect(websocket))
    detached = asyncio.ensure_future(observer.wait_detached())
    try:
        done, _ = await asyncio.wait({receiver, detached}, return_when=asyncio.FIRST_COMPLETED)
        if receiver not in done:
            # 配送失敗・滞留超過でHubから外された。クライアントには通常の切断として見せる
            receiver.cancel()
            await asyncio.gather(receiver, return_exceptions=True)
            logger.info("observer %d was detached, closing websocket", observer.id)
            try:
                await websocket.close(code=status.WS_1000_NORMAL_CLOSURE)
            except (RuntimeError, OSError, WebSocketDisconnect) as exc:
                logger.debug("websocket already closed: %r", exc)
    finally:
        for task in (receiver, detached):
            task.cancel()
        await asyncio.gather(receiver, detached, return_exceptions=True)
        await observer.aclose()


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    """クライアントからの切断まで受信を読み捨てる。テキスト・バイナリは問わない。"""
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return
