"""Server settings and the saved stream-settings record (JSON file)."""

from __future__ import annotations

from typing import Any

import json
import logging
import pathlib
import threading
import time


log = logging.getLogger(__name__)

APP_DIR = pathlib.Path(__file__).parent
CACHE_DIR = APP_DIR / ".cache"
SERVER_SETTINGS_FILE = CACHE_DIR / "server_settings.json"

DEFAULT_SETTINGS: dict[str, Any] = {
    "ffmpeg_path": "ffmpeg",
    "hls_dir": str(APP_DIR / "hls"),
    "stop_grace_secs": 2.0,
    "probe_timeout_secs": 5.0,
}

_settings_lock = threading.Lock()


def _read_file() -> dict[str, Any]:
    if not SERVER_SETTINGS_FILE.exists():
        return {}
    try:
        data = json.loads(SERVER_SETTINGS_FILE.read_text())
    except (OSError, json.JSONDecodeError) as e:
        log.warning("Ignoring unreadable settings file %s: %s", SERVER_SETTINGS_FILE, e)
        return {}
    return data if isinstance(data, dict) else {}


def _write_file(data: dict[str, Any]) -> None:
    SERVER_SETTINGS_FILE.parent.mkdir(parents=True, exist_ok=True)
    tmp = SERVER_SETTINGS_FILE.with_suffix(".tmp")
    tmp.write_text(json.dumps(data, indent=2))
    tmp.replace(SERVER_SETTINGS_FILE)


def load_server_settings() -> dict[str, Any]:
    """Load settings with defaults filled in."""
    with _settings_lock:
        data = _read_file()
    return {**DEFAULT_SETTINGS, **data}


# ===========================================================================
# Stream Settings Record
# ===========================================================================


def get_stream_settings() -> dict[str, Any] | None:
    """Get the saved stream record, or None if nothing was saved yet."""
    with _settings_lock:
        record = _read_file().get("stream")
    return record if isinstance(record, dict) else None


def save_stream_settings(
    source_address: str,
    quality: str,
    is_active: bool | None = None,
) -> dict[str, Any]:
    """Save source/quality (and optionally the active flag) of the stream record."""
    now = time.time()
    with _settings_lock:
        data = _read_file()
        record = data.get("stream") if isinstance(data.get("stream"), dict) else None
        if record is None:
            record = {"is_active": False, "created_at": now}
        record["source_address"] = source_address
        record["quality"] = quality
        if is_active is not None:
            record["is_active"] = is_active
        record["updated_at"] = now
        data["stream"] = record
        _write_file(data)
    return dict(record)


def set_stream_active(is_active: bool) -> dict[str, Any] | None:
    """Update only the active flag. Returns None if no record exists."""
    with _settings_lock:
        data = _read_file()
        record = data.get("stream")
        if not isinstance(record, dict):
            return None
        record["is_active"] = is_active
        record["updated_at"] = time.time()
        _write_file(data)
    return dict(record)
