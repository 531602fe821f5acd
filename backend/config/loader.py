"""
User configuration loader
Reads the user's config.toml, creating it from the bundled default on first run
"""

import os
import shutil
from pathlib import Path
from typing import Any, Dict, Optional

import toml

from core.logger import get_logger

logger = get_logger(__name__)

DEFAULT_CONFIG_FILE = Path(__file__).parent / "config.toml"
USER_CONFIG_DIR = Path("~/.config/autotracker").expanduser()
CONFIG_ENV_VAR = "AUTOTRACKER_CONFIG"


class ConfigLoader:
    """Loads and caches the user configuration"""

    def __init__(self, config_file: Optional[str] = None):
        resolved = config_file or os.environ.get(CONFIG_ENV_VAR)
        self.config_file = (
            Path(resolved).expanduser() if resolved else USER_CONFIG_DIR / "config.toml"
        )
        self._config: Dict[str, Any] = {}
        self._loaded = False

    def load(self) -> Dict[str, Any]:
        """Load configuration, creating the user file from defaults if missing"""
        if not self.config_file.exists():
            self._create_default_config()

        user_config: Dict[str, Any] = {}
        if self.config_file.exists():
            try:
                with open(self.config_file, "r", encoding="utf-8") as f:
                    user_config = toml.load(f)
            except toml.TomlDecodeError as e:
                logger.error(f"Invalid config file {self.config_file}: {e}, using defaults")
        else:
            logger.warning(f"Config file {self.config_file} unavailable, using defaults")

        self._config = self._merge(self._load_defaults(), user_config)
        self._loaded = True
        logger.debug(f"Configuration loaded from {self.config_file}")
        return self._config

    def _load_defaults(self) -> Dict[str, Any]:
        with open(DEFAULT_CONFIG_FILE, "r", encoding="utf-8") as f:
            return toml.load(f)

    def _create_default_config(self) -> None:
        try:
            self.config_file.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(DEFAULT_CONFIG_FILE, self.config_file)
            logger.info(f"Created default config file: {self.config_file}")
        except OSError as e:
            logger.warning(f"Could not create config file {self.config_file}: {e}")

    def _merge(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Merge section dicts one level deep, user values win"""
        merged = {key: dict(value) if isinstance(value, dict) else value for key, value in base.items()}
        for key, value in override.items():
            if isinstance(value, dict) and isinstance(merged.get(key), dict):
                merged[key].update(value)
            else:
                merged[key] = value
        return merged

    @property
    def config(self) -> Dict[str, Any]:
        if not self._loaded:
            self.load()
        return self._config

    def get(self, key: str, default: Any = None) -> Any:
        """Dotted lookup, e.g. get("tracking.capture_interval")"""
        node: Any = self.config
        for part in key.split("."):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node

    def set(self, key: str, value: Any) -> None:
        """Set a dotted key and persist the user file"""
        section, _, name = key.rpartition(".")
        target = self.config
        if section:
            for part in section.split("."):
                target = target.setdefault(part, {})
        target[name] = value

        with open(self.config_file, "w", encoding="utf-8") as f:
            toml.dump(self._config, f)
        logger.debug(f"Config updated: {key}")


_config_loader: Optional[ConfigLoader] = None


def get_config(config_file: Optional[str] = None) -> ConfigLoader:
    """Get the cached config loader (a new path replaces the cached one)"""
    global _config_loader
    if _config_loader is None or (
        config_file is not None and Path(config_file).expanduser() != _config_loader.config_file
    ):
        _config_loader = ConfigLoader(config_file)
    return _config_loader
