from __future__ import annotations

import re

_BRACKETED_RE = re.compile(r"\[.*?\]")
_LEADING_PREFIXED_ID_RE = re.compile(r"^\s*([sd][-_\s]?\d+(?![a-z0-9]))[:\-\s_]*")
_LEADING_BARE_ID_RE = re.compile(r"^\s*(\d+(?![a-z0-9]))[:\-\s_]*")
_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")

FALLBACK_SLUG = "ticket"


def slugify(text: str) -> str:
    """Lower-case, underscore separated slug of a ticket title.

    Bracketed tags like ``[Urgent]`` and a leading ticket id (``S-123:``,
    ``d_45``, ``123 -``) are removed first.
    """
    s = text.lower()
    s = _BRACKETED_RE.sub("", s)
    s = _LEADING_PREFIXED_ID_RE.sub("", s)
    s = _LEADING_BARE_ID_RE.sub("", s)
    s = _NON_ALNUM_RE.sub("_", s)
    return s.strip("_")


def ticket_digits(ticket_number: str) -> str:
    """'S-01234' → '01234'. Empty when the number has no digits."""
    return "".join(ch for ch in ticket_number if ch.isdigit())


def generate_branch_name(ticket_number: str, title: str | None = None) -> str:
    """Build ``<number>/<slug>`` for a ticket.

    Every mention of the ticket number in the title, with or without its S-/D-
    prefix, is dropped before slugifying. The number itself is kept as given.
    """
    slug = ""
    if title:
        digits = ticket_digits(ticket_number)
        cleaned = title
        if digits:
            cleaned = re.sub(
                rf"(?<!\d)(?:[sd][-_\s]?)?{digits}(?!\d)", "", cleaned, flags=re.IGNORECASE
            )
        slug = slugify(cleaned)
    return f"{ticket_number}/{slug or FALLBACK_SLUG}"
