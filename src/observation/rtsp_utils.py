"""
RTSP URL helpers.

Camera credentials live in a separate secrets file (kept out of the main
config and out of version control) and are merged into the stream URL at
startup. Any URL that reaches a log line goes through sanitize_url first.

Secrets file format:
    username: <rtsp_username>
    password: <rtsp_password>
    rtsp_url: rtsp://host:port/path   # optional, used when device_id is not a URL
"""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, Optional, Union
from urllib.parse import urlsplit, urlunsplit

import yaml

RTSP_SCHEMES = ("rtsp://", "rtsps://")


def is_rtsp_url(device_id: Union[int, str]) -> bool:
    return isinstance(device_id, str) and device_id.startswith(RTSP_SCHEMES)


def _with_userinfo(url: str, userinfo: Optional[str]) -> str:
    """Rebuild url with its user:password part replaced (or dropped when None)."""
    parts = urlsplit(url)
    host = parts.hostname or ""
    if parts.port:
        host = f"{host}:{parts.port}"
    netloc = f"{userinfo}@{host}" if userinfo else host
    return urlunsplit(parts._replace(netloc=netloc))


def sanitize_url(device_id: Union[int, str]) -> str:
    """device_id as a log-safe string: a URL password becomes '***'."""
    if not isinstance(device_id, str) or "@" not in device_id:
        return str(device_id)
    parts = urlsplit(device_id)
    if not parts.password:
        return device_id
    return _with_userinfo(device_id, f"{parts.username}:***")


def _load_secrets(path: str) -> Dict[str, Any]:
    with open(path, "r") as f:
        return yaml.safe_load(f) or {}


def inject_rtsp_credentials(source_cfg: Dict[str, Any]) -> None:
    """
    Merge RTSP credentials from ``source_cfg['secrets_file']`` into ``device_id``.

    The config dict is modified in place. An RTSP device_id wins over the
    secrets file's rtsp_url; URLs that already carry credentials are left
    alone. Nothing happens without a secrets file.
    """
    secrets_file = source_cfg.get("secrets_file")
    if not secrets_file:
        return
    if not os.path.exists(secrets_file):
        logging.warning(f"Secrets file not found: {secrets_file}")
        return

    secrets = _load_secrets(secrets_file)
    device_id = source_cfg.get("device_id", "")
    if is_rtsp_url(device_id):
        url = device_id
    elif secrets.get("rtsp_url"):
        url = secrets["rtsp_url"]
        logging.info("Using RTSP URL from secrets file")
    else:
        return

    username, password = secrets.get("username"), secrets.get("password")
    if username and password and "@" not in url:
        url = _with_userinfo(url, f"{username}:{password}")
        logging.info("RTSP credentials injected into device URL")
    source_cfg["device_id"] = url
