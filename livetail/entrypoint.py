"""コマンドラインからの起動処理。

設定ファイル（任意）を読み込み、コマンドライン引数で上書きしてから
uvicorn をプログラムから起動する。
"""

from __future__ import annotations

import argparse
import sys
from typing import List, Optional, Sequence

from livetail.config import Config, apply_overrides, load_config
from livetail.errors import SourceUnavailableError
from livetail.source import SourceSet


def _parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="livetail", description="stream growing text sources to WebSocket observers")
    parser.add_argument("sources", nargs="*", help="files to follow ('-' for standard input)")
    parser.add_argument("-c", "--config", dest="config", default=None, help="TOML config path (default: config/setting.toml)")
    parser.add_argument("--host", dest="host", default=None, help="listening host")
    parser.add_argument("-p", "--port", dest="port", type=int, default=None, help="listening port")
    parser.add_argument("-n", "--number", dest="seed_lines", type=int, default=None, help="starting lines read from each source")
    parser.add_argument("-b", "--buffer", dest="history_lines", type=int, default=None, help="lines replayed to new observers (default: --number)")
    parser.add_argument("-l", "--lines", dest="ui_lines", type=int, default=None, help="lines kept by the browser")
    parser.add_argument("--url-path", dest="url_path", default=None, help="URL path prefix")
    parser.add_argument("--log-level", dest="log_level", default=None, help="log level (DEBUG/INFO/...)")
    return parser.parse_args(argv)


def resolve_config(args: argparse.Namespace) -> Config:
    """設定ファイルとコマンドライン引数をマージする。"""
    from livetail import paths

    if args.config:
        config = load_config(args.config)
    else:
        default_path = paths.get_default_config_file_path()
        config = load_config(default_path) if default_path.exists() else Config()

    history_lines = args.history_lines
    # --buffer 未指定なら -n と同じ深さをリプレイする
    if history_lines is None and args.seed_lines is not None:
        history_lines = args.seed_lines

    return apply_overrides(
        config,
        sources=list(args.sources) or None,
        host=args.host,
        port=args.port,
        seed_lines=args.seed_lines,
        history_lines=history_lines,
        ui_lines=args.ui_lines,
        url_path=args.url_path,
        log_level=args.log_level,
    )


def check_sources(identifiers: List[str]) -> None:
    """起動前にファイルソースが開けるか確認する（開けなければ SourceUnavailableError）。"""
    for source in SourceSet.from_identifiers(identifiers):
        if source.is_stdin:
            continue
        try:
            with open(source.identifier, "rb"):
                pass
        except OSError as exc:
            raise SourceUnavailableError(str(source), exc.strerror or str(exc)) from exc


def main(argv: Optional[Sequence[str]] = None) -> int:
    """サーバー起動処理。"""
    args = _parse_args(argv)
    try:
        config = resolve_config(args)
    except (OSError, ValueError) as exc:
        print(f"[livetail] invalid configuration: {exc}", file=sys.stderr)
        return 2

    if not config.sources:
        print("[livetail] Arguments needed, use --help", file=sys.stderr)
        return 2

    # --- 追跡対象が開けない場合は配信するものが無いので、案内して終了 ---
    try:
        check_sources(config.sources)
    except SourceUnavailableError as exc:
        print(f"[livetail] {exc}", file=sys.stderr)
        return 1

    from livetail.main import create_app

    try:
        app = create_app(config)
    except ValueError as exc:
        print(f"[livetail] {exc}", file=sys.stderr)
        return 2

    import uvicorn

    uvicorn.run(
        app,
        host=config.host,
        port=config.port,
        ssl_keyfile=config.key if config.tls_enabled else None,
        ssl_certfile=config.certificate if config.tls_enabled else None,
        reload=False,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
