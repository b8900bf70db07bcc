"""Configuration helpers for ticket_notify."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict

import yaml


DEFAULT_DATA_DIR = Path.home() / ".ticket_notify"
DEFAULT_VAPID_SUBJECT = "mailto:admin@example.com"


def load_config(path: str | None = None) -> Dict[str, Any]:
    """Load configuration from ``path`` or ``NOTIFY_CONFIG`` env var.

    Values found in the YAML file are overridden by environment variables.
    ``data_dir`` selects where the ``schedules`` and ``subscriptions``
    collections and the executor cache live, ``timezone`` is the zone event
    dates and times are interpreted in and ``sweep_interval`` controls how
    often the background executor sweeps for due schedules. VAPID settings
    use the conventional ``VAPID_*`` variable names.
    """

    cfg: Dict[str, Any] = {}
    path = path or os.getenv("NOTIFY_CONFIG")
    if path and os.path.exists(path):
        with open(path, "r") as fh:
            cfg = yaml.safe_load(fh) or {}

    cfg["data_dir"] = os.getenv(
        "NOTIFY_DATA_DIR", cfg.get("data_dir", str(DEFAULT_DATA_DIR))
    )
    cfg["timezone"] = os.getenv("NOTIFY_TIMEZONE", cfg.get("timezone", "UTC"))
    cfg["sweep_interval"] = float(
        os.getenv("NOTIFY_SWEEP_INTERVAL", cfg.get("sweep_interval", 60))
    )
    cfg["request_timeout"] = float(
        os.getenv("NOTIFY_REQUEST_TIMEOUT", cfg.get("request_timeout", 5.0))
    )
    cfg["push_ttl"] = int(os.getenv("NOTIFY_PUSH_TTL", cfg.get("push_ttl", 86400)))
    cfg["log_level"] = os.getenv("NOTIFY_LOG_LEVEL", cfg.get("log_level", "INFO"))

    if "NOTIFY_SERVER_URL" in os.environ:
        cfg["server_url"] = os.environ["NOTIFY_SERVER_URL"]
    else:
        cfg.setdefault("server_url", None)

    cfg["vapid_public_key"] = os.getenv(
        "VAPID_PUBLIC_KEY", cfg.get("vapid_public_key", "")
    )
    cfg["vapid_private_key"] = os.getenv(
        "VAPID_PRIVATE_KEY", cfg.get("vapid_private_key", "")
    )
    cfg["vapid_subject"] = os.getenv(
        "VAPID_SUBJECT", cfg.get("vapid_subject", DEFAULT_VAPID_SUBJECT)
    )

    return cfg
