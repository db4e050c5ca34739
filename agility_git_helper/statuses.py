"""Status configuration: merging fetched workflow statuses with user customisation.

The server owns a status's name and order. The user owns its colour, its
visibility and which single status is applied when a branch is created
("dev in progress"). Every function here returns a new map; the input is never
mutated.
"""

from __future__ import annotations

import logging
import re
from dataclasses import replace
from typing import Iterable

from .errors import NotFoundError
from .models import StatusConfig, StatusConfigMap, StatusInfo

logger = logging.getLogger("agility_git_helper.statuses")

DEFAULT_COLORS = ["#1f77b4", "#ff7f0e", "#2ca02c", "#d62728", "#9467bd", "#8c564b"]
UNKNOWN_COLOR = "#999999"

HEX_COLOR_RE = re.compile(r"^#[0-9a-f]{6}$", re.IGNORECASE)

# Named colours offered by `ag status color`
COLOR_PRESETS: dict[str, str] = {
    "blue": "#1f77b4",
    "orange": "#ff7f0e",
    "green": "#2ca02c",
    "red": "#d62728",
    "purple": "#9467bd",
    "brown": "#8c564b",
    "teal": "#17becf",
    "pink": "#e377c2",
    "lime": "#bcbd22",
    "gray": "#7f7f7f",
    "navy": "#1a3a5c",
    "gold": "#d4af37",
    "coral": "#ff6b6b",
    "cyan": "#00bcd4",
    "indigo": "#3f51b5",
}

# ColorName values reported on StoryStatus assets
AGILITY_COLOR_NAMES: dict[str, str] = {
    "amber": "#ffbf00",
    "aqua": "#00bcd4",
    "berry": "#8e2c5c",
    "black": "#333333",
    "blue": "#1f77b4",
    "brown": "#8c564b",
    "bubblegum": "#e377c2",
    "cerulean": "#2a7ab0",
    "coral": "#ff6b6b",
    "cyan": "#00bcd4",
    "forest": "#2e7d32",
    "gold": "#d4af37",
    "gray": "#7f7f7f",
    "green": "#2ca02c",
    "grey": "#7f7f7f",
    "indigo": "#3f51b5",
    "lavender": "#b39ddb",
    "lime": "#bcbd22",
    "magenta": "#c2185b",
    "mint": "#66bb6a",
    "mist": "#b0bec5",
    "navy": "#1a3a5c",
    "ocean": "#0277bd",
    "orange": "#ff7f0e",
    "pink": "#e377c2",
    "plum": "#7b1fa2",
    "purple": "#9467bd",
    "red": "#d62728",
    "sage": "#8d9e7e",
    "sea": "#26a69a",
    "sky": "#4fc3f7",
    "slate": "#546e7a",
    "teal": "#17becf",
    "water": "#4fc3f7",
    "yellow": "#fbc02d",
}


def is_hex_color(value: str) -> bool:
    return bool(HEX_COLOR_RE.match(value))


def color_from_agility_name(color_name: str | None) -> str | None:
    """Translate a server ColorName to hex, None when it has no mapping."""
    if not color_name:
        return None
    key = color_name.strip().lower()
    if key in AGILITY_COLOR_NAMES:
        return AGILITY_COLOR_NAMES[key]
    if is_hex_color(key):
        return key
    return None


def palette_color(index: int) -> str:
    return DEFAULT_COLORS[index % len(DEFAULT_COLORS)]


def merge_status_config(
    existing: StatusConfigMap, fetched: Iterable[StatusInfo]
) -> StatusConfigMap:
    """Reconcile a fresh status fetch with the persisted configuration.

    - new ids get a colour from the server's ColorName, else the palette
      colour at (size of *existing*) + (new ids seen so far in this merge)
    - known ids keep colour, hidden and the dev-in-progress flag; name and order
      are taken from the fetch
    - ids absent from the fetch pass through untouched
    """
    merged: StatusConfigMap = dict(existing)
    color_index = len(existing)
    added = 0
    for status in fetched:
        current = merged.get(status.id)
        if current is None:
            color = color_from_agility_name(status.color_name) or palette_color(color_index)
            color_index += 1
            merged[status.id] = StatusConfig(
                id=status.id,
                name=status.name,
                color=color,
                order=status.order,
            )
            added += 1
        elif current.name != status.name or current.order != status.order:
            merged[status.id] = replace(current, name=status.name, order=status.order)
    if added:
        logger.info("Merged status config: %d new, %d total", added, len(merged))
    return merged


def _require(config: StatusConfigMap, status_id: str) -> StatusConfig:
    if status_id not in config:
        raise NotFoundError("Status", status_id)
    return config[status_id]


def set_dev_in_progress(config: StatusConfigMap, status_id: str) -> StatusConfigMap:
    """Flag *status_id* as the dev-in-progress status, unflagging every other one."""
    _require(config, status_id)
    return {
        sid: replace(cfg, is_dev_in_progress=(sid == status_id))
        for sid, cfg in config.items()
    }


def clear_dev_in_progress(
    config: StatusConfigMap, status_id: str | None = None
) -> StatusConfigMap:
    """Remove the dev-in-progress flag from *status_id*, or from every entry."""
    return {
        sid: replace(cfg, is_dev_in_progress=False)
        if status_id is None or sid == status_id
        else cfg
        for sid, cfg in config.items()
    }


def normalize_color(color: str) -> str:
    """Return a lower-case ``#rrggbb`` for a hex value or preset name.

    Raises ValueError for anything else.
    """
    value = color.strip().lower()
    if value in COLOR_PRESETS:
        return COLOR_PRESETS[value]
    if is_hex_color(value):
        return value
    raise ValueError(
        f"Invalid color {color!r}: expected #RRGGBB or one of {', '.join(COLOR_PRESETS)}"
    )


def set_status_color(config: StatusConfigMap, status_id: str, color: str) -> StatusConfigMap:
    current = _require(config, status_id)
    return {**config, status_id: replace(current, color=normalize_color(color))}


def toggle_status_hidden(config: StatusConfigMap, status_id: str) -> StatusConfigMap:
    current = _require(config, status_id)
    return {**config, status_id: replace(current, hidden=not current.hidden)}


def flagged_dev_status_id(config: StatusConfigMap) -> str | None:
    for status_id, cfg in config.items():
        if cfg.is_dev_in_progress:
            return status_id
    return None


def prune_status_config(
    config: StatusConfigMap, fetched: Iterable[StatusInfo]
) -> tuple[StatusConfigMap, list[StatusConfig]]:
    """Drop entries whose id is no longer reported by the server.

    Returns (kept, removed).
    """
    live = {s.id for s in fetched}
    kept = {sid: cfg for sid, cfg in config.items() if sid in live}
    removed = [cfg for sid, cfg in config.items() if sid not in live]
    return kept, removed


def find_by_name(config: StatusConfigMap, name: str) -> StatusConfig | None:
    """Status entries are matched to tickets by name; first match wins."""
    for cfg in config.values():
        if cfg.name == name:
            return cfg
    return None


def sorted_statuses(config: StatusConfigMap) -> list[StatusConfig]:
    return sorted(config.values(), key=lambda c: (c.order, c.name.lower()))


def status_color_for(name: str, index: int, config: StatusConfigMap) -> str:
    """Colour for a group named *name* at position *index*."""
    if name == "Unknown":
        return UNKNOWN_COLOR
    cfg = find_by_name(config, name)
    if cfg is not None:
        return cfg.color
    return palette_color(index)
