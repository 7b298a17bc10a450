"""UIハイライト設定（プリセットJSON）の読み込み。"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from livetail.paths import resolve_path_under_app_root


DEFAULT_PRESET_PATH = Path(__file__).parent / "preset" / "default.json"

logger = logging.getLogger(__name__)


def load_highlight_preset(path: Optional[str] = None) -> Dict[str, Any]:
    """
    ハイライト設定を読み込む。

    path 未指定なら同梱の default.json を使う。
    ファイルが無い・JSONとして不正・オブジェクトでない場合は ValueError。
    """
    preset_path = DEFAULT_PRESET_PATH if not path else resolve_path_under_app_root(path)
    if not preset_path.exists():
        raise ValueError(f"preset file {preset_path} doesn't exist")
    try:
        data = json.loads(preset_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"preset file {preset_path} is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ValueError(f"preset file {preset_path} must contain a JSON object")
    logger.info("highlight preset loaded: %s", preset_path)
    return data
