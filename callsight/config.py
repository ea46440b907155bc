"""
callsight/config.py
Service configuration. Persists to callsight_config.json; environment
variables (optionally from a .env file) override the file.

  TWILIO_AUTH_TOKEN     shared secret for callback signatures
  PUBLIC_BASE_URL       externally visible base URL the provider calls
  CORS_ORIGINS          comma-separated allowed origins
  APP_ENV               'production' enables the daily retention sweep
  RETENTION_DAYS        recording/transcription retention window
  SWEEP_INTERVAL_HOURS  retention sweep interval
  RATE_LIMIT            per-client request limit on /api/ routes, e.g. "120/minute"
  HOST / PORT           bind address for python -m callsight.api

Missing auth_token or public_base_url leaves callback signature checks in
BYPASS mode — see callsight.webhook_auth.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = {
    "auth_token": None,
    "public_base_url": None,
    "cors_origins": ["http://localhost:3000", "http://localhost:5173"],
    "environment": "development",
    "retention_days": 7,
    "sweep_interval_hours": 24,
    "max_conversation_entries": 50,
    "timezone": None,
    "host": "127.0.0.1",
    "port": 5001,
    "rate_limit": "120/minute",
}

# env var → (config key, converter)
ENV_OVERRIDES = {
    "TWILIO_AUTH_TOKEN":    ("auth_token", str),
    "PUBLIC_BASE_URL":      ("public_base_url", str),
    "CORS_ORIGINS":         ("cors_origins", lambda v: [o.strip() for o in v.split(",") if o.strip()]),
    "APP_ENV":              ("environment", str),
    "RETENTION_DAYS":       ("retention_days", int),
    "SWEEP_INTERVAL_HOURS": ("sweep_interval_hours", float),
    "HOST":                 ("host", str),
    "PORT":                 ("port", int),
    "RATE_LIMIT":           ("rate_limit", str),
}


def _config_path(project_root: Optional[Path] = None) -> Path:
    root = project_root or Path.cwd()
    return root / "callsight_config.json"


def load_config(project_root: Optional[Path] = None) -> Dict[str, Any]:
    """Load config from callsight_config.json. Returns defaults if missing."""
    path = _config_path(project_root)
    if path.exists():
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return {**DEFAULT_CONFIG, **data}
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"Config load failed: {e}")
    return dict(DEFAULT_CONFIG)


def save_config(config: Dict[str, Any], project_root: Optional[Path] = None) -> Path:
    """Persist config to callsight_config.json."""
    path = _config_path(project_root)
    path.write_text(json.dumps(config, indent=2), encoding="utf-8")
    return path


def apply_env(config: Dict[str, Any], environ: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """Overlay environment variables onto config. Bad values are logged and skipped."""
    environ = os.environ if environ is None else environ
    merged = dict(config)
    for var, (key, convert) in ENV_OVERRIDES.items():
        raw = environ.get(var)
        if raw is None or raw == "":
            continue
        try:
            merged[key] = convert(raw)
        except ValueError:
            logger.warning(f"Ignoring invalid {var}={raw!r}")
    return merged


def ensure_config(project_root: Optional[Path] = None) -> Dict[str, Any]:
    """
    Load .env, the config file and environment overrides.
    Returns merged config and warns when signature checks will be bypassed.
    """
    load_dotenv()
    config = apply_env(load_config(project_root))
    if not config.get("auth_token") or not config.get("public_base_url"):
        logger.warning(
            "TWILIO_AUTH_TOKEN or PUBLIC_BASE_URL not set — "
            "callback signature verification will be BYPASSED"
        )
    return config


def is_production(config: Dict[str, Any]) -> bool:
    return str(config.get("environment", "")).lower() == "production"
