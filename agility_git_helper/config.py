from __future__ import annotations

import hashlib
import json
import logging
from pathlib import Path

from .errors import ConfigurationError
from .models import StatusConfig, StatusConfigMap, ViewMode
from .statuses import flagged_dev_status_id

logger = logging.getLogger(__name__)

# --- paths ---

CONFIG_DIR = Path.home() / ".config" / "agility-git-helper"
CONFIG_FILE = CONFIG_DIR / "config"
CERT_FILE = CONFIG_DIR / "cacerts.pem"
LOG_FILE = Path.home() / ".local" / "share" / "agility-git-helper" / "ag.log"

# Persisted selection per presentation
SELECTION_KEYS: dict[ViewMode, str] = {
    ViewMode.MY_TICKETS: "member",
    ViewMode.TEAM_TICKETS: "team",
}

# Fingerprint of the server/token the selections above were made under
CONNECTION_KEY = "connection"

# --- config helpers ---


def _read_config() -> dict[str, str]:
    if not CONFIG_FILE.exists():
        return {}
    config: dict[str, str] = {}
    for line in CONFIG_FILE.read_text().splitlines():
        line = line.strip()
        if "=" in line and not line.startswith("#"):
            key, _, value = line.partition("=")
            config[key.strip()] = value.strip()
    return config


def _write_config(config: dict[str, str]) -> None:
    CONFIG_FILE.parent.mkdir(parents=True, exist_ok=True)
    CONFIG_FILE.write_text(
        "\n".join(f"{k}={v}" for k, v in sorted(config.items())) + "\n"
    )


def get_config(key: str) -> str | None:
    return _read_config().get(key)


def set_config(key: str, value: str) -> None:
    config = _read_config()
    config[key] = value
    _write_config(config)


def unset_config(key: str) -> None:
    config = _read_config()
    if config.pop(key, None) is not None:
        _write_config(config)


# --- connection ---


def get_instance_url() -> str | None:
    """Return the configured instance URL with trailing slashes removed."""
    url = get_config("server")
    return url.rstrip("/") if url else None


def get_access_token() -> str | None:
    return get_config("token") or None


def is_configured() -> bool:
    return bool(get_instance_url() and get_access_token())


def get_validated_config() -> tuple[str, str]:
    """Return (instance_url, token), raising ConfigurationError if either is missing."""
    url = get_instance_url()
    if not url:
        raise ConfigurationError(
            "Agility instance URL not configured. Run: ag configure"
        )
    token = get_access_token()
    if not token:
        raise ConfigurationError(
            "Agility access token not configured. Run: ag configure"
        )
    return url, token


def connection_fingerprint(url: str | None, token: str | None) -> str | None:
    """Stable digest of the connection settings, None when incomplete.

    Lets view state notice a changed URL/token without holding the token itself.
    """
    if not url or not token:
        return None
    return hashlib.sha256(f"{url.rstrip('/')}\n{token}".encode()).hexdigest()[:16]


def current_fingerprint() -> str | None:
    return connection_fingerprint(get_instance_url(), get_access_token())


def record_connection(previous: str | None = None) -> bool:
    """Store the current connection fingerprint, dropping selections made under another.

    *previous* stands in for the stored fingerprint when none has been written
    yet. An incomplete connection leaves everything untouched. Returns True if
    a member or team selection was cleared.
    """
    current = current_fingerprint()
    if current is None:
        return False
    config = _read_config()
    stored = config.get(CONNECTION_KEY) or previous
    cleared: list[str] = []
    if stored is not None and stored != current:
        cleared = [key for key in SELECTION_KEYS.values() if config.pop(key, None) is not None]
    if cleared or config.get(CONNECTION_KEY) != current:
        config[CONNECTION_KEY] = current
        _write_config(config)
    if cleared:
        logger.info("Connection changed, cleared selections: %s", ", ".join(cleared))
    return bool(cleared)


# --- selection ---


def get_selected_id(mode: ViewMode) -> str | None:
    """Return the persisted selection, ignoring one made under another connection."""
    config = _read_config()
    value = config.get(SELECTION_KEYS[mode]) or None
    stored = config.get(CONNECTION_KEY)
    current = current_fingerprint()
    if value and stored and current and stored != current:
        return None
    return value


def set_selected_id(mode: ViewMode, value: str | None) -> None:
    if value:
        record_connection()
        set_config(SELECTION_KEYS[mode], value)
    else:
        unset_config(SELECTION_KEYS[mode])


def get_selected_member_id() -> str | None:
    return get_selected_id(ViewMode.MY_TICKETS)


def get_selected_team_id() -> str | None:
    return get_selected_id(ViewMode.TEAM_TICKETS)


# --- status configuration ---


def get_status_config() -> StatusConfigMap:
    """Return the persisted status configuration, keyed by status id."""
    raw = get_config("statuses") or "{}"
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, ValueError):
        return {}
    config: StatusConfigMap = {}
    for status_id, entry in data.items():
        try:
            config[status_id] = StatusConfig.from_dict(entry)
        except (KeyError, TypeError, ValueError):
            continue
    return config


def save_status_config(config: StatusConfigMap) -> None:
    """Persist the whole map. Last writer wins."""
    set_config(
        "statuses",
        json.dumps({k: v.to_dict() for k, v in config.items()}, separators=(",", ":")),
    )


def get_dev_in_progress_status_id() -> str | None:
    """Return the flagged status id, falling back to the legacy dev_status key."""
    return flagged_dev_status_id(get_status_config()) or get_config("dev_status") or None
