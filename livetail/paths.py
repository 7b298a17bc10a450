"""実行時パス解決。

設定ファイルやログなどの可変データはアプリルート配下に置く。

方針:
- 環境変数 LIVETAIL_HOME があれば最優先
- それ以外はカレントディレクトリをアプリルートとする
"""

from __future__ import annotations

import os
from pathlib import Path


def get_app_root_dir() -> Path:
    """アプリのルートディレクトリを返す。"""

    env_home = os.getenv("LIVETAIL_HOME")
    if env_home:
        return Path(env_home).expanduser().resolve()
    return Path.cwd().resolve()


def get_config_dir() -> Path:
    """設定ディレクトリ（config/）を返す。作成はしない。"""

    return get_app_root_dir() / "config"


def get_default_config_file_path() -> Path:
    """既定の設定ファイルパス（config/setting.toml）を返す。"""

    return get_config_dir() / "setting.toml"


def resolve_path_under_app_root(path: str | Path) -> Path:
    """相対パスをアプリルート基準の絶対パスに解決する。

    - ``~`` はホームディレクトリに展開する
    - 絶対パスはそのまま返す
    - 相対パスは app_root / path として解決する
    """

    p = Path(path).expanduser()
    if p.is_absolute():
        return p
    return (get_app_root_dir() / p).resolve()
