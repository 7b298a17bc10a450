"""
セッション発行API

認可が有効な場合はHTTP Basic認証を通った利用者に署名付きセッションCookieを払い出す。
WebSocket接続時にはこのCookieを Observer Gate が検証する。
"""

from __future__ import annotations

import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from livetail.schemas import SessionInfo


router = APIRouter(prefix="/api", tags=["session"])
security = HTTPBasic(auto_error=False)
logger = logging.getLogger(__name__)


def _same(provided: str, expected: str) -> bool:
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


def verify_basic_credentials(
    request: Request,
    credentials: Optional[HTTPBasicCredentials] = Depends(security),
) -> None:
    """認可が有効なときだけBasic認証を要求する。"""
    config = request.app.state.config
    if not config.authorization_enabled:
        return
    if credentials is None or not (
        _same(credentials.username, config.user) & _same(credentials.password, config.password)
    ):
        logger.warning("Authentication failed: invalid credentials")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
            headers={"WWW-Authenticate": "Basic"},
        )


@router.get("/session", response_model=SessionInfo, dependencies=[Depends(verify_basic_credentials)])
async def get_session(request: Request, response: Response) -> SessionInfo:
    """購読先の名前空間を返し、必要ならセッションCookieを発行する。"""
    state = request.app.state
    hub = state.primary_hub
    gate = state.gate
    if gate is not None:
        response.set_cookie(
            gate.cookie_name,
            gate.issue(),
            httponly=True,
            samesite="lax",
            secure=state.config.tls_enabled,
            path=state.config.normalized_url_path or "/",
        )
    return SessionInfo(namespace=hub.fingerprint, files=hub.source_set.label, authorized=gate is not None)
