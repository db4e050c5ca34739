"""Ticket mapping, filtering and grouping by status."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Iterable

from .models import StatusConfigMap, StatusGroup, TicketData
from .statuses import find_by_name, status_color_for

if TYPE_CHECKING:
    from .agility_api import RawAsset

logger = logging.getLogger("agility_git_helper.tickets")

UNKNOWN_STATUS = "Unknown"
DEFAULT_PROJECT = "No Project"
DEFAULT_ASSET_TYPE = "Story"


def ticket_url(instance_url: str, asset_id: str) -> str:
    return f"{instance_url.rstrip('/')}/assetDetail.v1?oid={asset_id}"


def ticket_from_asset(asset: "RawAsset", instance_url: str) -> TicketData | None:
    """Normalize one decoded workitem. Returns None when it has no Number."""
    attrs = asset.attrs()
    number = attrs.get("Number")
    if not number:
        logger.warning("Skipping workitem %s without a Number", asset.id)
        return None
    name = attrs.get("Name") or ""
    return TicketData(
        label=f"{number}: {name}" if name else str(number),
        number=str(number),
        asset_id=asset.asset_id,
        status=str(attrs.get("Status.Name") or ""),
        project=str(attrs.get("Scope.Name") or DEFAULT_PROJECT),
        url=ticket_url(instance_url, asset.asset_id),
        asset_type=str(attrs.get("AssetType") or DEFAULT_ASSET_TYPE),
    )


def map_assets_to_tickets(assets: Iterable["RawAsset"], instance_url: str) -> list[TicketData]:
    tickets = []
    for asset in assets:
        ticket = ticket_from_asset(asset, instance_url)
        if ticket is not None:
            tickets.append(ticket)
    return tickets


def filter_tickets(tickets: Iterable[TicketData], filter_text: str = "") -> list[TicketData]:
    """Case-insensitive substring match on label, number, status and project."""
    needle = filter_text.strip().lower()
    if not needle:
        return list(tickets)
    return [
        t for t in tickets
        if any(needle in field.lower() for field in (t.label, t.number, t.status, t.project))
    ]


def group_tickets(
    tickets: Iterable[TicketData],
    config: StatusConfigMap,
    filter_text: str = "",
) -> list[StatusGroup]:
    """Group tickets by status name, ordered and coloured by the status config.

    Statuses configured as hidden are dropped. Configured statuses come first by
    their order, then unconfigured ones alphabetically, then Unknown.
    """
    buckets: dict[str, list[TicketData]] = {}
    for ticket in filter_tickets(tickets, filter_text):
        buckets.setdefault(ticket.status or UNKNOWN_STATUS, []).append(ticket)

    def sort_key(name: str) -> tuple[int, int, str]:
        if name == UNKNOWN_STATUS:
            return (2, 0, "")
        cfg = find_by_name(config, name)
        if cfg is None:
            return (1, 0, name.lower())
        return (0, cfg.order, name.lower())

    visible = []
    for name in buckets:
        if name != UNKNOWN_STATUS:
            cfg = find_by_name(config, name)
            if cfg is not None and cfg.hidden:
                continue
        visible.append(name)

    return [
        StatusGroup(
            status=name,
            color=status_color_for(name, index, config),
            tickets=tuple(buckets[name]),
        )
        for index, name in enumerate(sorted(visible, key=sort_key))
    ]
