import json
import pytest
from datetime import date, datetime

from smart_break.models.stats import StatsPeriod
from smart_break.services.metrics import CSV_COLUMNS, MetricsCollector


@pytest.fixture
def metrics(ledger):
    return MetricsCollector(ledger)


def seed(ledger, clock):
    clock.now = datetime(2024, 3, 10, 9)
    ledger.record_break(True, 60)
    ledger.record_break(False)
    clock.now = datetime(2024, 3, 11, 9)
    ledger.start_session()
    ledger.record_break(True, 300)
    ledger.record_break(True, 60)


def test_daily_metrics(ledger, clock, metrics):
    seed(ledger, clock)

    data = metrics.get_daily_metrics()

    assert data["date"] == "2024-03-11"
    assert data["tracked"] is True
    assert data["summary"]["breaks_completed"] == 2
    assert data["summary"]["long_breaks"] == 1
    assert data["summary"]["daily_score"] == 100.0
    assert data["hourly_patterns"][9] == 2


def test_untracked_day(metrics):
    assert metrics.get_daily_metrics(date(2020, 1, 1)) == {"date": "2020-01-01", "tracked": False}


def test_period_metrics(ledger, clock, metrics):
    seed(ledger, clock)

    week = metrics.get_period_metrics(StatsPeriod.WEEK)

    assert week["period"] == "week"
    assert week["days_tracked"] == 2
    assert week["completion_rate"] == 75.0
    assert week["average_score"] == 75.0


def test_csv_has_one_row_per_day(ledger, clock, metrics):
    seed(ledger, clock)

    lines = metrics.export_csv().splitlines()

    assert lines[0] == ",".join(CSV_COLUMNS)
    assert lines[1:] == [
        "2024-03-10,1,1,1,50.0",
        "2024-03-11,2,0,6,100.0",
    ]


def test_csv_for_fresh_install_lists_today(metrics):
    assert metrics.export_csv().splitlines()[1:] == ["2024-03-11,0,0,0,100.0"]


def test_json_export(ledger, clock, metrics):
    seed(ledger, clock)

    data = json.loads(metrics.export_json())

    assert data["version"] == 1
    assert data["export_date"].startswith("2024-03-11")
    assert data["summary"]["total_breaks"] == 3
    assert data["summary"]["daily_break_goal"] == 6
    assert len(data["sessions"]) == 1
    assert data["sessions"][0]["breaks_taken"] == 2
    assert [d["day"] for d in data["days"]] == ["2024-03-10", "2024-03-11"]
    assert data["days"][0]["daily_score"] == 50.0
