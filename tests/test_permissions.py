"""Tests for haulsync/services/permissions.py"""

from types import SimpleNamespace

import pytest

from haulsync.services.permissions import (
    PERMISSION_KEYS,
    apply_preset,
    can_access,
    detect_preset,
    get_permissions_summary,
    get_preset_label,
    has_all_permissions,
    has_permission,
    permission_flags,
)


def _profile(is_admin=False, **granted):
    flags = {key: False for key in PERMISSION_KEYS}
    flags.update(granted)
    return SimpleNamespace(is_admin=is_admin, permission_preset=None, **flags)


class TestHasPermission:
    def test_admin_passes_everything(self):
        admin = _profile(is_admin=True)
        assert all(has_permission(admin, key) for key in PERMISSION_KEYS)

    def test_flag_must_be_exactly_true(self):
        assert has_permission(_profile(can_manage_trips=True), "can_manage_trips") is True
        assert has_permission(_profile(can_manage_trips=1), "can_manage_trips") is False

    def test_no_hierarchy_between_flags(self):
        settlements = _profile(can_manage_settlements=True)
        assert has_permission(settlements, "can_view_financials") is False

    def test_none_profile(self):
        assert has_permission(None, "can_post_loads") is False
        assert can_access(None, ["can_post_loads"]) is False
        assert get_permissions_summary(None) == []

    def test_dict_profiles_are_supported(self):
        assert has_permission({"can_post_loads": True}, "can_post_loads") is True


class TestAnyAll:
    def test_can_access_is_any_of(self):
        user = _profile(can_view_financials=True)
        assert can_access(user, ["can_view_financials", "can_manage_settlements"]) is True
        assert can_access(user, ["can_manage_drivers"]) is False

    def test_has_all_permissions(self):
        user = _profile(can_manage_drivers=True, can_manage_vehicles=True)
        assert has_all_permissions(user, ["can_manage_drivers", "can_manage_vehicles"]) is True
        assert has_all_permissions(user, ["can_manage_drivers", "can_manage_trips"]) is False


class TestSummary:
    def test_admin_summary(self):
        assert get_permissions_summary(_profile(is_admin=True)) == ["Full access"]

    def test_no_permissions(self):
        assert get_permissions_summary(_profile()) == ["No permissions"]

    def test_groups_in_order(self):
        user = _profile(can_view_financials=True, can_post_pickups=True, can_manage_vehicles=True)
        assert get_permissions_summary(user) == ["Posting", "Fleet", "Financial"]


class TestPresets:
    @pytest.mark.parametrize(
        "granted,expected",
        [
            (PERMISSION_KEYS, "admin"),
            (("can_manage_drivers", "can_manage_vehicles"), "fleet_manager"),
            (("can_view_financials", "can_manage_settlements"), "accountant"),
            (("can_manage_trips", "can_manage_loads"), "operations"),
            (
                (
                    "can_post_pickups",
                    "can_post_loads",
                    "can_manage_carrier_requests",
                    "can_manage_trips",
                    "can_manage_loads",
                ),
                "dispatcher",
            ),
            (("can_manage_trips",), "custom"),
            ((), "custom"),
        ],
    )
    def test_detect_preset(self, granted, expected):
        flags = {key: key in granted for key in PERMISSION_KEYS}
        assert detect_preset(flags) == expected

    def test_labels(self):
        assert get_preset_label("fleet_manager") == "Fleet Manager"
        assert get_preset_label(None) == "Custom"
        assert get_preset_label("nonsense") == "Custom"

    def test_apply_preset_round_trips_through_detect(self):
        user = _profile(can_post_loads=True)
        apply_preset(user, "accountant")
        assert user.permission_preset == "accountant"
        assert detect_preset(permission_flags(user)) == "accountant"
        assert user.can_post_loads is False

    def test_apply_custom_keeps_flags(self):
        user = _profile(can_post_loads=True)
        apply_preset(user, "custom")
        assert user.permission_preset == "custom"
        assert user.can_post_loads is True

    def test_unknown_preset_raises(self):
        with pytest.raises(ValueError):
            apply_preset(_profile(), "superuser")
