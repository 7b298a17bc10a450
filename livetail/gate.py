"""
Observer Gate（接続時の認可）

起動時に決めた秘密鍵で署名したセッショントークンをCookieで受け取り、
署名を検証してから購読を許可する。状態は持たない。

トークン形式: ``s:<value>.<base64(HMAC-SHA256(secret, value))>``（末尾の = は除く）
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import secrets
from typing import Optional

from starlette.requests import cookie_parser

from livetail.errors import AuthorizationRejected


DEFAULT_COOKIE_NAME = "livetail.sid"
_SIGNED_PREFIX = "s:"


def generate_secret() -> str:
    """プロセス起動ごとのセッション秘密鍵を生成する。"""
    return secrets.token_hex(32)


class ObserverGate:
    """署名付きセッションCookieの発行と検証。"""

    def __init__(self, secret: str, cookie_name: str = DEFAULT_COOKIE_NAME) -> None:
        if not secret:
            raise ValueError("gate secret must not be empty")
        self._secret = secret.encode("utf-8")
        self.cookie_name = cookie_name

    def _signature(self, value: str) -> str:
        digest = hmac.new(self._secret, value.encode("utf-8"), hashlib.sha256).digest()
        return base64.b64encode(digest).decode("ascii").rstrip("=")

    def sign(self, value: str) -> str:
        return f"{_SIGNED_PREFIX}{value}.{self._signature(value)}"

    def unsign(self, token: str) -> Optional[str]:
        """署名を検証して値を返す。検証できなければ None。"""
        if not token or not token.startswith(_SIGNED_PREFIX):
            return None
        body = token[len(_SIGNED_PREFIX):]
        value, sep, signature = body.rpartition(".")
        if not sep or not value:
            return None
        if not hmac.compare_digest(signature, self._signature(value)):
            return None
        return value

    def issue(self) -> str:
        """新しいセッションIDを払い出し、署名済みトークンを返す。"""
        return self.sign(secrets.token_urlsafe(24))

    def check(self, cookie_header: Optional[str]) -> str:
        """
        ハンドシェイクのCookieヘッダを検証する。

        成功時はセッションIDを返し、失敗時は AuthorizationRejected を送出する。
        """
        if not cookie_header:
            raise AuthorizationRejected("No cookie in header")
        cookies = cookie_parser(cookie_header)
        token = cookies.get(self.cookie_name)
        if not token:
            raise AuthorizationRejected("Session cookie not provided")
        session_id = self.unsign(token)
        if session_id is None:
            raise AuthorizationRejected("Invalid cookie")
        return session_id
