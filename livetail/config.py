"""起動設定の読み込みと検証。"""

from __future__ import annotations

import pathlib
from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, List, Optional

import tomli


@dataclass
class Config:
    """起動設定（起動時のみ使用、実行中は変更しない）。"""

    # ログ
    log_level: str = "INFO"
    log_file_enabled: bool = False
    log_file_path: str = "logs/livetail.log"

    # HTTP/WebSocket
    host: str = "0.0.0.0"
    port: int = 9001
    url_path: str = ""

    # 追跡対象
    sources: List[str] = field(default_factory=list)
    seed_lines: int = 10  # 追跡開始時に読む末尾行数（B）
    history_lines: int = 10  # 接続時にリプレイする履歴の行数（N）
    keep_empty_lines: bool = True
    follow_command: str = "tail"  # 空文字ならポーリングで追跡する
    poll_interval_seconds: float = 0.5
    max_pending_lines: int = 10_000

    # UIオプション（接続時にクライアントへ通知するだけ）
    ui_lines: int = 2000
    ui_hide_topbar: bool = False
    ui_indent: bool = True
    ui_highlight: bool = False
    ui_highlight_preset: Optional[str] = None

    # 認可 / TLS
    user: Optional[str] = None
    password: Optional[str] = None
    key: Optional[str] = None
    certificate: Optional[str] = None

    @property
    def authorization_enabled(self) -> bool:
        return bool(self.user and self.password)

    @property
    def tls_enabled(self) -> bool:
        return bool(self.key and self.certificate)

    @property
    def normalized_url_path(self) -> str:
        """末尾スラッシュを除いたURLプレフィックス（ルートは空文字）。"""
        path = (self.url_path or "").rstrip("/")
        if path and not path.startswith("/"):
            path = "/" + path
        return path


_INT_KEYS = {"port", "seed_lines", "history_lines", "max_pending_lines", "ui_lines"}
_BOOL_KEYS = {"log_file_enabled", "keep_empty_lines", "ui_hide_topbar", "ui_indent", "ui_highlight"}
_FLOAT_KEYS = {"poll_interval_seconds"}


def _allowed_keys() -> List[str]:
    return [f.name for f in fields(Config)]


def validate_config(config: Config) -> Config:
    """値の範囲チェック。問題があれば ValueError。"""
    for key in ("seed_lines", "history_lines", "ui_lines"):
        if getattr(config, key) < 0:
            raise ValueError(f"config key '{key}' must be >= 0")
    if config.max_pending_lines < 1:
        raise ValueError("config key 'max_pending_lines' must be >= 1")
    if config.poll_interval_seconds <= 0:
        raise ValueError("config key 'poll_interval_seconds' must be > 0")
    if not (0 < config.port < 65536):
        raise ValueError(f"config key 'port' is out of range: {config.port}")
    if bool(config.user) != bool(config.password):
        raise ValueError("config keys 'user' and 'password' must be set together")
    if bool(config.key) != bool(config.certificate):
        raise ValueError("config keys 'key' and 'certificate' must be set together")
    return config


def config_from_dict(data: Dict[str, Any]) -> Config:
    """dict（TOMLの中身）から Config を作る。未知のキーは拒否する。"""
    allowed = _allowed_keys()
    unknown_keys = sorted(set(data.keys()) - set(allowed))
    if unknown_keys:
        keys = ", ".join(repr(k) for k in unknown_keys)
        raise ValueError(f"unknown config key(s): {keys}")

    values: Dict[str, Any] = {}
    for key, value in data.items():
        if key in _BOOL_KEYS:
            if not isinstance(value, bool):
                raise ValueError(f"config key '{key}' must be a boolean")
        elif key in _INT_KEYS:
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValueError(f"config key '{key}' must be an integer")
        elif key in _FLOAT_KEYS:
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"config key '{key}' must be a number")
            value = float(value)
        elif key == "sources":
            if not isinstance(value, list) or not all(isinstance(v, str) and v for v in value):
                raise ValueError("config key 'sources' must be a list of non-empty strings")
            value = list(value)
        elif value is not None and not isinstance(value, str):
            raise ValueError(f"config key '{key}' must be a string")
        values[key] = value
    return validate_config(Config(**values))


def load_config(path: str | pathlib.Path = "config/setting.toml") -> Config:
    """TOML設定を読み込む。"""
    config_path = pathlib.Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"config file not found: {config_path}")

    with config_path.open("rb") as f:
        data = tomli.load(f)
    return config_from_dict(data)


def apply_overrides(config: Config, **overrides: Any) -> Config:
    """CLI等からの上書き（None の項目は無視）を適用した新しい Config を返す。"""
    changes = {k: v for k, v in overrides.items() if v is not None}
    if not changes:
        return config
    return validate_config(replace(config, **changes))
