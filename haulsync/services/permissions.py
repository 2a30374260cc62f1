"""permissions.py

Flat boolean permission checks for company staff.

Rules:
  1. Admins (is_admin) pass every check.
  2. Everyone else needs the exact flag set to True; there is no hierarchy
     and no delegation between flags.
  3. Presets are named bundles of flags. A profile whose flags match a preset
     exactly is reported as that preset, otherwise as "custom".
"""

from __future__ import annotations

from typing import Any, Iterable

PERMISSION_KEYS = (
    "can_post_pickups",
    "can_post_loads",
    "can_manage_carrier_requests",
    "can_manage_drivers",
    "can_manage_vehicles",
    "can_manage_trips",
    "can_manage_loads",
    "can_view_financials",
    "can_manage_settlements",
)


def _flags(*granted: str) -> dict[str, bool]:
    return {key: key in granted for key in PERMISSION_KEYS}


PERMISSION_PRESETS: dict[str, dict[str, Any]] = {
    "admin": {
        "label": "Admin",
        "description": "Full access to everything",
        "permissions": _flags(*PERMISSION_KEYS),
    },
    "dispatcher": {
        "label": "Dispatcher",
        "description": "Posting, carrier requests, and load management",
        "permissions": _flags(
            "can_post_pickups",
            "can_post_loads",
            "can_manage_carrier_requests",
            "can_manage_trips",
            "can_manage_loads",
        ),
    },
    "fleet_manager": {
        "label": "Fleet Manager",
        "description": "Manage drivers and vehicles",
        "permissions": _flags("can_manage_drivers", "can_manage_vehicles"),
    },
    "accountant": {
        "label": "Accountant",
        "description": "View financials and manage settlements",
        "permissions": _flags("can_view_financials", "can_manage_settlements"),
    },
    "operations": {
        "label": "Operations",
        "description": "Manage trips and loads",
        "permissions": _flags("can_manage_trips", "can_manage_loads"),
    },
    "custom": {
        "label": "Custom",
        "description": "Custom permissions",
        "permissions": _flags(),
    },
}

# (summary label, keys that grant it)
_SUMMARY_GROUPS = (
    ("Posting", ("can_post_pickups", "can_post_loads")),
    ("Carrier Requests", ("can_manage_carrier_requests",)),
    ("Fleet", ("can_manage_drivers", "can_manage_vehicles")),
    ("Operations", ("can_manage_trips", "can_manage_loads")),
    ("Financial", ("can_view_financials", "can_manage_settlements")),
)


def _flag(profile: Any, key: str) -> bool:
    if isinstance(profile, dict):
        return profile.get(key) is True
    return getattr(profile, key, None) is True


def has_permission(profile: Any, key: str) -> bool:
    if profile is None:
        return False
    if _flag(profile, "is_admin"):
        return True
    return _flag(profile, key)


def can_access(profile: Any, keys: Iterable[str]) -> bool:
    """True when the profile holds ANY of the keys."""
    if profile is None:
        return False
    if _flag(profile, "is_admin"):
        return True
    return any(_flag(profile, key) for key in keys)


def has_all_permissions(profile: Any, keys: Iterable[str]) -> bool:
    if profile is None:
        return False
    if _flag(profile, "is_admin"):
        return True
    return all(_flag(profile, key) for key in keys)


def get_permissions_summary(profile: Any) -> list[str]:
    if profile is None:
        return []
    if _flag(profile, "is_admin"):
        return ["Full access"]

    summary = [label for label, keys in _SUMMARY_GROUPS if any(_flag(profile, key) for key in keys)]
    return summary or ["No permissions"]


def permission_flags(profile: Any) -> dict[str, bool]:
    return {key: _flag(profile, key) for key in PERMISSION_KEYS}


def detect_preset(permissions: dict[str, bool]) -> str:
    for preset, config in PERMISSION_PRESETS.items():
        if preset == "custom":
            continue
        if all(config["permissions"][key] == bool(permissions.get(key)) for key in PERMISSION_KEYS):
            return preset
    return "custom"


def get_preset_label(preset: str | None) -> str:
    if not preset or preset == "custom":
        return "Custom"
    config = PERMISSION_PRESETS.get(preset)
    return config["label"] if config else "Custom"


def apply_preset(profile: Any, preset: str) -> None:
    """Copy a preset's flags onto the profile. `custom` only records the name."""
    if preset not in PERMISSION_PRESETS:
        raise ValueError(f"Unknown permission preset: {preset}")
    if preset != "custom":
        for key, value in PERMISSION_PRESETS[preset]["permissions"].items():
            setattr(profile, key, value)
    profile.permission_preset = preset
