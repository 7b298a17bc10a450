"""
ロギング設定

標準loggingの初期化、外部ライブラリのログ抑制、
uvicornアクセスログからの特定パス除外を行う。
"""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
import pathlib


class _UvicornAccessPathFilter(logging.Filter):
    """
    uvicornアクセスログから特定パスを除外するフィルタ。

    ヘルスチェック等の頻繁なリクエストをログから除外する。
    """

    def __init__(self, suppressed_paths: set[str]) -> None:
        super().__init__()
        self._suppressed_paths = suppressed_paths

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
        try:
            msg = record.getMessage()
        except Exception:
            return True
        return not any(path in msg for path in self._suppressed_paths)


def suppress_uvicorn_access_log_paths(*paths: str) -> None:
    """指定されたパスを含むuvicornアクセスログを出力しないようにする。"""
    if not paths:
        return
    logger = logging.getLogger("uvicorn.access")
    logger.addFilter(_UvicornAccessPathFilter(set(paths)))


def setup_logging(
    level: str = "INFO",
    *,
    log_file_enabled: bool = False,
    log_file_path: str = "logs/livetail.log",
) -> None:
    """
    ロギングを初期化する。

    標準loggingのフォーマット設定と、外部ライブラリのログレベル調整を行う。
    """
    root_level = getattr(logging, level.upper(), logging.INFO)
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file_enabled:
        log_path = pathlib.Path(log_file_path)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        # ファイルログは最大1MBでローテーションしてサイズ超過を防ぐ。
        handlers.append(
            RotatingFileHandler(
                log_path,
                maxBytes=1_000_000,
                backupCount=1,
                encoding="utf-8",
            )
        )

    logging.basicConfig(
        level=root_level,
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
        handlers=handlers,
    )
    # 外部ライブラリの冗長なログを抑制
    for name, lib_level in [
        ("asyncio", logging.INFO),
        # WebSocketのフレーム単位のDEBUGは量が多い
        ("websockets", logging.INFO),
        ("uvicorn.error", logging.INFO),
    ]:
        logging.getLogger(name).setLevel(lib_level)
