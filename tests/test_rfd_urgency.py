"""Tests for haulsync/services/rfd_urgency.py"""

from datetime import date
from types import SimpleNamespace

import pytest

from haulsync.services.rfd_urgency import (
    calculate_rfd_urgency,
    company_rfd_overview,
    count_by_level,
    filter_by_level,
    loads_needing_attention,
    sort_by_urgency,
    urgency_badge_label,
    urgency_description,
    urgency_level,
)

TODAY = date(2026, 3, 6)


def _load(rfd_date=None, **kwargs):
    defaults = dict(rfd_date=rfd_date, rfd_date_tbd=False, rfd_delivery_deadline=None, trip_id=None)
    defaults.update(kwargs)
    return SimpleNamespace(**defaults)


class TestUrgencyLevel:
    @pytest.mark.parametrize(
        "days,is_tbd,on_trip,expected",
        [
            (None, False, False, "tbd"),
            (5, True, False, "tbd"),
            (-3, False, False, "critical"),
            (0, False, False, "critical"),
            (1, False, False, "critical"),
            (2, False, False, "urgent"),
            (7, False, False, "approaching"),
            (8, False, False, "normal"),
            (1, False, True, "critical"),
            (2, False, True, "normal"),
            (5, False, True, "normal"),
        ],
    )
    def test_truth_table(self, days, is_tbd, on_trip, expected):
        assert urgency_level(days, is_tbd, on_trip) == expected


class TestCalculate:
    def test_overdue(self):
        urgency = calculate_rfd_urgency(_load(date(2026, 3, 4)), TODAY)
        assert urgency["level"] == "critical"
        assert urgency["label"] == "Critical"
        assert urgency["daysUntilRfd"] == -2
        assert urgency["isOverdue"] is True

    def test_business_days_and_deadline(self):
        load = _load(date(2026, 3, 13), rfd_delivery_deadline=date(2026, 3, 5))
        urgency = calculate_rfd_urgency(load, TODAY)
        assert urgency["level"] == "approaching"
        assert urgency["businessDaysUntilRfd"] == 5
        assert urgency["daysUntilDeadline"] == -1
        assert urgency["isDeadlineOverdue"] is True

    def test_tbd_flag_wins_over_date(self):
        urgency = calculate_rfd_urgency(_load(date(2026, 3, 7), rfd_date_tbd=True), TODAY)
        assert urgency["level"] == "tbd"
        assert urgency["daysUntilRfd"] is None

    def test_dict_loads(self):
        urgency = calculate_rfd_urgency({"rfd_date": date(2026, 3, 8)}, TODAY)
        assert urgency["level"] == "urgent"


class TestLabels:
    @pytest.mark.parametrize(
        "rfd_date,description,badge",
        [
            (date(2026, 3, 5), "RFD was yesterday", "1d overdue"),
            (date(2026, 3, 1), "RFD was 5 days ago", "5d overdue"),
            (date(2026, 3, 6), "RFD is today", "Today"),
            (date(2026, 3, 7), "RFD is tomorrow", "Tomorrow"),
            (date(2026, 3, 16), "RFD in 10 days", "10d"),
            (None, "RFD date not set", "TBD"),
        ],
    )
    def test_description_and_badge(self, rfd_date, description, badge):
        urgency = calculate_rfd_urgency(_load(rfd_date), TODAY)
        assert urgency_description(urgency) == description
        assert urgency_badge_label(urgency) == badge


class TestCollections:
    def test_sort_puts_tbd_last(self):
        tbd = _load(None)
        later = _load(date(2026, 3, 20))
        overdue = _load(date(2026, 3, 1))
        soon = _load(date(2026, 3, 7))
        assert sort_by_urgency([tbd, later, overdue, soon], TODAY) == [overdue, soon, later, tbd]

    def test_filter_and_count(self):
        loads = [_load(date(2026, 3, 7)), _load(date(2026, 3, 8)), _load(None), _load(date(2026, 4, 1))]
        assert len(filter_by_level(loads, ["critical", "urgent"], TODAY)) == 2
        assert count_by_level(loads, TODAY) == {
            "critical": 1,
            "urgent": 1,
            "approaching": 0,
            "normal": 1,
            "tbd": 1,
        }

    def test_needing_attention_excludes_loads_on_trips(self):
        loose = _load(date(2026, 3, 10))
        on_trip = _load(date(2026, 3, 7), trip_id=4)
        far = _load(date(2026, 5, 1))
        assert loads_needing_attention([loose, on_trip, far], TODAY) == [loose]


class TestCompanyOverview:
    def test_only_open_rfd_loads(self, seed, db):
        company = seed.company()
        today = date.today()
        seed.load(company, load_subtype="rfd", rfd_date=today)
        seed.load(company, load_subtype="rfd", rfd_date_tbd=True)
        seed.load(company, load_subtype="rfd", rfd_date=today, status="delivered")
        seed.load(company, load_subtype="live", rfd_date=today)

        overview = company_rfd_overview(db, company.id)
        assert len(overview["loads"]) == 2
        assert overview["loads"][0]["urgency"]["level"] == "critical"
        assert overview["loads"][0]["description"] == "RFD is today"
        assert overview["counts"]["tbd"] == 1
        assert overview["needingAttention"] == 1

    def test_level_filter(self, seed, db):
        company = seed.company()
        seed.load(company, load_subtype="rfd", rfd_date=date.today())
        seed.load(company, load_subtype="rfd", rfd_date_tbd=True)

        overview = company_rfd_overview(db, company.id, levels=["tbd"])
        assert [item["urgency"]["level"] for item in overview["loads"]] == ["tbd"]
