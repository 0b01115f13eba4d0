"""Bittrex API credentials.

Lookup order:
1. Environment: BITTREX_API_KEY and BITTREX_API_SECRET (both must be set)
2. JSON file: `config_path` argument, else BITTREX_CONFIG_PATH, else
   ~/.bittrex_config.json. Keys missing from the file fall back to
   whichever single environment variable is set.
"""
import json
import os
from pathlib import Path
from typing import NamedTuple, Optional, Tuple

ENV_KEY = "BITTREX_API_KEY"
ENV_SECRET = "BITTREX_API_SECRET"
ENV_CONFIG_PATH = "BITTREX_CONFIG_PATH"
DEFAULT_CONFIG_FILE = ".bittrex_config.json"


class BittrexCredentials(NamedTuple):
    api_key: str
    api_secret: str


def _resolve_config_path(config_path: Optional[str]) -> str:
    if config_path is not None:
        return config_path
    return os.getenv(ENV_CONFIG_PATH) or str(Path.home() / DEFAULT_CONFIG_FILE)


def _read_config_file(path: str) -> Tuple[Optional[str], Optional[str]]:
    config_file = Path(path)
    if not config_file.exists():
        return None, None
    try:
        with config_file.open("r") as f:
            cfg = json.load(f)
    except (OSError, ValueError) as e:
        raise ValueError(f"Failed to load config from {path}: {e}")
    return cfg.get("api_key"), cfg.get("api_secret")


def load_credentials(config_path: Optional[str] = None) -> BittrexCredentials:
    """Load Bittrex credentials from env or config file.

    Raises:
        ValueError: If the file is unreadable or either value is missing
    """
    env_key, env_secret = os.getenv(ENV_KEY), os.getenv(ENV_SECRET)
    if env_key and env_secret:
        return BittrexCredentials(api_key=env_key, api_secret=env_secret)

    path = _resolve_config_path(config_path)
    file_key, file_secret = _read_config_file(path)
    api_key = file_key or env_key
    api_secret = file_secret or env_secret

    if not api_key or not api_secret:
        raise ValueError(
            "Missing Bittrex credentials. Provide via:\n"
            f"  - Environment: {ENV_KEY}, {ENV_SECRET}\n"
            f"  - Config file: {path}\n"
            f"  - {ENV_CONFIG_PATH} env var to override config location"
        )
    return BittrexCredentials(api_key=api_key, api_secret=api_secret)


def save_config(config_path: str, api_key: str, api_secret: str) -> None:
    """Write credentials as JSON, readable by the owner only.

    WARNING: Stores secrets in plaintext.
    """
    cfg_file = Path(config_path)
    cfg_file.parent.mkdir(parents=True, exist_ok=True)
    cfg_file.write_text(json.dumps({"api_key": api_key, "api_secret": api_secret}, indent=2))
    try:
        cfg_file.chmod(0o600)
    except OSError:
        pass  # Windows doesn't support chmod
