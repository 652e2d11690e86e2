"""Host-side configuration for devbridge.

Configuration is read from ~/.config/devbridge/config.yml, validated with
pydantic and then overridden by environment variables. The composition root
(``devbridge.cli`` or ``devbridge.web.server.create_app``) loads it once and
passes it down.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import ValidationError

from devbridge.models.config import GatewayConfigModel
from devbridge.paths import HostPaths

logger = logging.getLogger(__name__)

# env var -> (section, key, cast)
ENV_OVERRIDES = {
    "DEVBRIDGE_AUTH_TOKEN": ("auth", "token", str),
    "DEVBRIDGE_HOST": ("server", "host", str),
    "DEVBRIDGE_PORT": ("server", "port", int),
    "DEVBRIDGE_CLAUDE_HOME": ("monitor", "claude_home", str),
    "DEVBRIDGE_LOG_LEVEL": ("logging", "level", str),
}


class GatewayConfig:
    """Manages gateway configuration from a YAML file plus environment."""

    def __init__(self, config_path: Optional[Path] = None, env: Optional[Dict[str, str]] = None):
        self.config_path = Path(config_path) if config_path else HostPaths.config_file()
        self._env = os.environ if env is None else env
        self.model = self._load()

    def _load(self) -> GatewayConfigModel:
        """Load configuration from file, then apply environment overrides."""
        raw_config: Dict[str, Any] = {}
        if self.config_path.exists():
            try:
                with open(self.config_path) as f:
                    raw_config = yaml.safe_load(f) or {}
            except (OSError, yaml.YAMLError) as e:
                logger.warning(f"Failed to load config from {self.config_path}: {e}")
                raw_config = {}

        if not isinstance(raw_config, dict):
            logger.warning(f"Ignoring non-mapping config in {self.config_path}")
            raw_config = {}

        merged = self._apply_env(raw_config)

        try:
            return GatewayConfigModel.model_validate(merged)
        except ValidationError as e:
            logger.warning(f"Config validation errors: {e}")
            # Keep whatever sections are valid, defaults elsewhere
            defaults = GatewayConfigModel().model_dump()
            model_dict = self._deep_merge(defaults, {})
            for section, values in merged.items():
                if section not in defaults or not isinstance(values, dict):
                    continue
                candidate = dict(model_dict)
                candidate[section] = self._deep_merge(defaults[section], values)
                try:
                    GatewayConfigModel.model_validate(candidate)
                    model_dict = candidate
                except ValidationError:
                    logger.warning(f"Using defaults for invalid config section '{section}'")
            return GatewayConfigModel.model_validate(model_dict)

    def _apply_env(self, raw_config: Dict[str, Any]) -> Dict[str, Any]:
        result = self._deep_merge({}, raw_config)
        for var, (section, key, cast) in ENV_OVERRIDES.items():
            value = self._env.get(var)
            if value is None or value == "":
                continue
            try:
                typed = cast(value)
            except ValueError:
                logger.warning(f"Ignoring invalid {var}={value!r}")
                continue
            section_dict = result.get(section)
            if not isinstance(section_dict, dict):
                section_dict = {}
            section_dict[key] = typed
            result[section] = section_dict
        return result

    def _deep_merge(self, base: dict, override: dict) -> dict:
        """Deep merge override into base."""
        result = base.copy()
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value
        return result

    @property
    def files_root(self) -> Path:
        """Directory that relative file/search/git paths resolve against."""
        root = self.model.files.root
        return Path(root).expanduser() if root else Path.cwd()

    @property
    def claude_home(self) -> Path:
        home = self.model.monitor.claude_home
        return Path(home).expanduser() if home else HostPaths.claude_home()

    def get(self, *keys, default=None) -> Any:
        """Get nested config value.

        Example: config.get("ssh", "connect_timeout")
        """
        value: Any = self.model
        for key in keys:
            if hasattr(value, key):
                value = getattr(value, key)
            elif isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default
        if hasattr(value, "model_dump"):
            return value.model_dump()
        return value

    def as_dict(self, redact: bool = True) -> Dict[str, Any]:
        data = self.model.model_dump()
        if redact and data["auth"]["token"]:
            data["auth"]["token"] = "***"
        return data


def load_config(config_path: Optional[Path] = None) -> GatewayConfig:
    """Load gateway configuration (file + environment)."""
    return GatewayConfig(config_path)
