"""
settings.py - Configuration loader for model backend, analysis caps and logging
"""

import logging
import os
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

import constants

logger = logging.getLogger(__name__)

CONFIG_PATH = os.path.join("config", "threatlens.yaml")

DEFAULT_CFG: Dict[str, Any] = {
    "model_backend": "none",          # none|openai|http
    "model_name": "gpt-3.5-turbo",
    "model_endpoint": "",
    "api_key": "",
    "model_timeout": 30.0,
    "max_tokens": 1000,
    "temperature": 0.3,
    "max_security_events": constants.MAX_SECURITY_EVENTS,
    "max_iocs": constants.MAX_IOCS,
    "include_private_ips": True,
    "log_dir": "/tmp/threatlens_logs",
    "log_level": "INFO",
}

_BACKENDS = ("none", "openai", "http")


def load_yaml_file(path: str) -> Optional[dict]:
    """Helper to load a YAML file with robust error handling."""
    if not os.path.exists(path):
        return None
    try:
        with open(path, "r", encoding="utf-8") as f:
            return yaml.safe_load(f) or {}
    except (yaml.YAMLError, IOError, UnicodeDecodeError) as e:
        logger.warning(f"Failed to load config from {path}: {e}. Using defaults.")
        return None


def _as_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("1", "true", "yes", "on"):
        return True
    if text in ("0", "false", "no", "off"):
        return False
    return None


def _validate(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """Coerce values, falling back to defaults with a warning on bad input."""
    backend = str(cfg["model_backend"]).lower()
    if backend not in _BACKENDS:
        logger.warning(f"Invalid model_backend '{backend}', using 'none'")
        backend = "none"
    cfg["model_backend"] = backend

    for k in ("max_tokens", "max_security_events", "max_iocs"):
        try:
            cfg[k] = max(1, int(cfg[k]))
        except (TypeError, ValueError):
            logger.warning(f"Invalid {k} value {cfg[k]!r}, using default {DEFAULT_CFG[k]}")
            cfg[k] = DEFAULT_CFG[k]

    for k, lo, hi in (("model_timeout", 0.1, 600.0), ("temperature", 0.0, 2.0)):
        try:
            val = float(cfg[k])
            if not lo <= val <= hi:
                raise ValueError(val)
            cfg[k] = val
        except (TypeError, ValueError):
            logger.warning(f"Invalid {k} value {cfg[k]!r}, using default {DEFAULT_CFG[k]}")
            cfg[k] = DEFAULT_CFG[k]

    flag = _as_bool(cfg["include_private_ips"])
    if flag is None:
        logger.warning(f"Invalid include_private_ips value {cfg['include_private_ips']!r}, using default")
        flag = DEFAULT_CFG["include_private_ips"]
    cfg["include_private_ips"] = flag
    return cfg


def load_settings(path: Optional[str] = None, use_env: bool = True) -> Dict[str, Any]:
    """Load configuration: defaults, then YAML file, then environment variables.

    The YAML path is, in order: the ``path`` argument, ``$THREATLENS_CONFIG``,
    ``config/threatlens.yaml``. Unknown YAML keys are ignored.
    """
    if use_env:
        load_dotenv()
    cfg = DEFAULT_CFG.copy()

    yaml_path = path or (os.getenv(constants.ENV_CONFIG_PATH) if use_env else None) or CONFIG_PATH
    loaded = load_yaml_file(yaml_path)
    if loaded:
        if isinstance(loaded, dict):
            cfg.update({k: v for k, v in loaded.items() if k in DEFAULT_CFG})
        else:
            logger.warning(f"Ignoring config {yaml_path}: top level is not a mapping")

    if use_env:
        env_map = {
            "model_backend": constants.ENV_MODEL_BACKEND,
            "model_name": "OPENAI_MODEL",
            "model_endpoint": "MODEL_ENDPOINT",
            "api_key": "OPENAI_API_KEY",
            "model_timeout": "OPENAI_TIMEOUT",
            "max_tokens": "MAX_TOKENS",
            "temperature": "TEMPERATURE",
            "max_security_events": "MAX_SECURITY_EVENTS",
            "max_iocs": "MAX_IOCS",
            "include_private_ips": "INCLUDE_PRIVATE_IPS",
            "log_dir": "THREATLENS_LOG_DIR",
            "log_level": constants.ENV_LOG_LEVEL,
        }
        for key, env_name in env_map.items():
            value = os.getenv(env_name)
            if value:
                cfg[key] = value

    return _validate(cfg)
