"""Flash messages stored in the signed session cookie."""

from __future__ import annotations

from typing import Any, MutableMapping

SESSION_KEY = "_flashes"
FLASH_TYPES = ("success", "error", "info", "warning")


def add_flash(session: MutableMapping[str, Any], flash_type: str, message: str) -> None:
    if flash_type not in FLASH_TYPES:
        raise ValueError(f"Unknown flash type `{flash_type}`")
    flashes = session.get(SESSION_KEY) or {}
    flashes.setdefault(flash_type, []).append(message)
    session[SESSION_KEY] = flashes


def pop_flashes(session: MutableMapping[str, Any]) -> dict[str, list[str]]:
    return session.pop(SESSION_KEY, None) or {}
