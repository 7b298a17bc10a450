"""
APIスキーマとWebSocketペイロード

HTTP応答はpydanticモデル、WebSocketは {"event": ..., "data": ...} のJSON文字列で送る。
"""

from __future__ import annotations

import json
from typing import Any

from pydantic import BaseModel


LINE_EVENT = "line"
OPTIONS_LINES_EVENT = "options:lines"
OPTIONS_HIDE_TOPBAR_EVENT = "options:hide-topbar"
OPTIONS_NO_INDENT_EVENT = "options:no-indent"
OPTIONS_HIGHLIGHT_CONFIG_EVENT = "options:highlightConfig"


class HealthResponse(BaseModel):
    status: str


class SessionInfo(BaseModel):
    """クライアントが購読に使う名前空間と、追跡中ソースの表示名。"""

    namespace: str
    files: str
    authorized: bool


def serialize_event(event: str, data: Any = None) -> str:
    """WebSocket送信用のJSON文字列に整形する。"""
    return json.dumps({"event": event, "data": data}, ensure_ascii=False, separators=(",", ":"))
