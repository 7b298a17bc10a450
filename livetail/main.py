"""FastAPI エントリポイント。"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import FastAPI

from livetail.api import session, stream
from livetail.config import Config
from livetail.gate import ObserverGate, generate_secret
from livetail.hub import FanoutHub, HubRegistry
from livetail.logging_config import setup_logging, suppress_uvicorn_access_log_paths
from livetail.presets import load_highlight_preset
from livetail.schemas import HealthResponse
from livetail.source import SourceSet


logger = logging.getLogger(__name__)


def build_hub(config: Config) -> FanoutHub:
    """設定から SourceSet と Hub を組み立てる。"""
    source_set = SourceSet.from_identifiers(config.sources)
    return FanoutHub(
        source_set,
        history_capacity=config.history_lines,
        seed_lines=config.seed_lines,
        keep_empty_lines=config.keep_empty_lines,
        follow_command=config.follow_command,
        poll_interval=config.poll_interval_seconds,
        max_pending_lines=config.max_pending_lines,
    )


def create_app(config: Config, *, registry: Optional[HubRegistry] = None) -> FastAPI:
    """アプリ生成と初期化（ログ→Hub→Gate→ルータ登録）をまとめて行う。"""
    url_path = config.normalized_url_path

    # 1. ログ
    setup_logging(
        config.log_level,
        log_file_enabled=config.log_file_enabled,
        log_file_path=config.log_file_path,
    )
    suppress_uvicorn_access_log_paths(f"{url_path}/api/health")

    # 2. Hub（起動時に1度だけ作る。ソースを開くのはstartup時）
    hub = build_hub(config)
    registry = registry if registry is not None else HubRegistry()
    registry.register(hub)

    # 3. 認可（秘密鍵はプロセスごとに生成）
    gate = ObserverGate(generate_secret()) if config.authorization_enabled else None

    # 4. UIハイライト
    highlight_config = load_highlight_preset(config.ui_highlight_preset) if config.ui_highlight else None

    # 5. FastAPIアプリ作成
    app = FastAPI(title="livetail")
    app.state.config = config
    app.state.registry = registry
    app.state.primary_hub = hub
    app.state.gate = gate
    app.state.highlight_config = highlight_config

    app.include_router(session.router, prefix=url_path)
    app.include_router(stream.router, prefix=url_path)

    @app.get(f"{url_path}/api/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        """稼働確認用のヘルスチェック。"""
        return HealthResponse(status="healthy")

    @app.on_event("startup")
    async def start_hubs() -> None:
        """全Hubの追跡を開始（ソースを開けなければ起動失敗）。"""
        await registry.start_all()
        logger.info(
            "livetail serving %s on namespace %s (authorization=%s)",
            hub.source_set.label,
            hub.fingerprint,
            "on" if gate is not None else "off",
        )

    @app.on_event("shutdown")
    async def stop_hubs() -> None:
        """追跡サブプロセス/ポーリングを止める。"""
        await registry.stop_all()

    return app
