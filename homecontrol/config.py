"""Runtime configuration.

Order of precedence (later wins):
  defaults -> YAML options file -> environment variables
"""

import logging
import os
from dataclasses import dataclass, fields
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

DEFAULT_PORT = 3000
DEFAULT_HANDLER_TIMEOUT = 10.0
DEFAULT_SIMULATED_DELAY = 0.1
DEFAULT_RECONNECT_DELAY = 2.0


@dataclass
class Config:
    """Effective configuration for the server and the event client."""
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    data_file: str = "data.json"
    hue_bridge_ip: Optional[str] = None
    hue_username: Optional[str] = None
    handler_timeout: float = DEFAULT_HANDLER_TIMEOUT
    simulated_delay: float = DEFAULT_SIMULATED_DELAY
    nanoleaf_native: bool = False
    log_level: str = "INFO"
    server_url: str = f"http://localhost:{DEFAULT_PORT}"
    reconnect_delay: float = DEFAULT_RECONNECT_DELAY

    @property
    def bridge_configured(self) -> bool:
        return bool(self.hue_bridge_ip and self.hue_username)


# Environment variable -> Config field
ENV_VARS = {
    "HOMECONTROL_HOST": "host",
    "HOMECONTROL_PORT": "port",
    "HOMECONTROL_DATA_FILE": "data_file",
    "HUE_BRIDGE_IP": "hue_bridge_ip",
    "HUE_USERNAME": "hue_username",
    "HANDLER_TIMEOUT": "handler_timeout",
    "SIMULATED_DELAY": "simulated_delay",
    "NANOLEAF_NATIVE": "nanoleaf_native",
    "LOG_LEVEL": "log_level",
    "HOMECONTROL_URL": "server_url",
    "RECONNECT_DELAY": "reconnect_delay",
}


def _coerce(name: str, value: Any, default: Any) -> Any:
    """Convert a raw option to the type of its default, or keep the default."""
    if value is None:
        return default
    try:
        if isinstance(default, bool):
            if isinstance(value, bool):
                return value
            return str(value).strip().lower() in ("true", "1", "yes", "on")
        if isinstance(default, int):
            return int(value)
        if isinstance(default, float):
            return float(value)
        return str(value)
    except (TypeError, ValueError):
        logger.warning(f"Invalid value {value!r} for '{name}', using default {default!r}")
        return default


def _load_options_file(path: str) -> Dict[str, Any]:
    """Read the YAML options file. Missing or unreadable files yield {}."""
    if not os.path.exists(path):
        logger.warning(f"Options file {path} does not exist, ignoring")
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            options = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Error loading options file {path}: {e}")
        return {}
    if not isinstance(options, dict):
        logger.warning(f"Options file {path} is not a mapping, ignoring")
        return {}
    return options


def load_config(options_file: Optional[str] = None, environ: Optional[Dict[str, str]] = None) -> Config:
    """Build the effective configuration.

    Args:
        options_file: YAML file with option overrides. Defaults to the path in
            HOMECONTROL_OPTIONS, if set.
        environ: Environment mapping, defaults to os.environ.

    Returns:
        Config with every field populated
    """
    environ = os.environ if environ is None else environ
    defaults = Config()
    values = {f.name: getattr(defaults, f.name) for f in fields(Config)}

    options_file = options_file or environ.get("HOMECONTROL_OPTIONS")
    if options_file:
        for key, raw in _load_options_file(options_file).items():
            if key not in values:
                logger.warning(f"Unknown option '{key}' in {options_file}, ignoring")
                continue
            values[key] = _coerce(key, raw, getattr(defaults, key))

    for env_name, key in ENV_VARS.items():
        raw = environ.get(env_name)
        if raw is None or raw == "":
            continue
        values[key] = _coerce(key, raw, getattr(defaults, key))

    return Config(**values)
