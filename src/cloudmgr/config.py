"""
Client configuration: config file at ~/.cloudmgr/config.json plus CLOUDMGR_* env overrides.
"""

import json
import os
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel

DEFAULT_BASE_URL = "https://api.cloudmgr.example.com"
CONFIG_FILE = Path.home() / ".cloudmgr" / "config.json"

_ENV_PREFIX = "CLOUDMGR_"


class ClientConfig(BaseModel):
    base_url: str = DEFAULT_BASE_URL
    timeout: float = 30.0
    max_attempts: int = 4
    base_delay: float = 0.5
    max_delay: float = 8.0
    page_size: int = 100
    max_pages: int = 100


def load_config_file(path: Optional[Path] = None) -> dict[str, Any]:
    try:
        return json.loads((path or CONFIG_FILE).read_text())
    except (FileNotFoundError, json.JSONDecodeError):
        return {}


def save_config_file(cfg: dict[str, Any], path: Optional[Path] = None) -> None:
    target = path or CONFIG_FILE
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(json.dumps(cfg, indent=2, default=str))
    try:
        target.chmod(0o600)
    except OSError:
        pass


def load_config(path: Optional[Path] = None, env: Optional[dict[str, str]] = None) -> ClientConfig:
    """Build a ClientConfig from the config file, then apply env overrides."""
    env = os.environ if env is None else env
    values = {k: v for k, v in load_config_file(path).items() if k in ClientConfig.model_fields}
    for name in ClientConfig.model_fields:
        raw = env.get(f"{_ENV_PREFIX}{name.upper()}")
        if raw is not None:
            values[name] = raw
    return ClientConfig.model_validate(values)
