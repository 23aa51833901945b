import json
import pytest
from click.testing import CliRunner

from smart_break.cli.service import cli
from smart_break.config.config import EnforcementLevel
from smart_break.config.settings import settings
from smart_break.models.pause import PauseSignal
from smart_break.services.ledger import AdherenceLedger
from smart_break.services.pause_engine import load_pause_config
from smart_break.services.store import KeyValueStore
from smart_break.services.timer import load_timer_preferences


@pytest.fixture
def db_path(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "LOG_DIR", tmp_path / "logs")
    return str(tmp_path / "stats.db")


@pytest.fixture
def invoke(db_path):
    def _invoke(*args):
        return CliRunner().invoke(cli, ["--db", db_path, *args])
    return _invoke


def seed_breaks(db_path, completed=2, skipped=1):
    ledger = AdherenceLedger(KeyValueStore(db_path), persist_async=False)
    for _ in range(completed):
        ledger.record_break(True, 60)
    for _ in range(skipped):
        ledger.record_break(False)
    ledger.close()


def test_status_on_fresh_database(invoke):
    result = invoke("status")
    assert result.exit_code == 0
    assert "Daily score" in result.output
    assert "0/6" in result.output


def test_stats_and_insights(invoke, db_path):
    seed_breaks(db_path)

    stats = invoke("stats", "--period", "week")
    assert stats.exit_code == 0
    assert "Breaks completed" in stats.output

    insights = invoke("insights")
    assert insights.exit_code == 0


def test_insights_on_empty_database(invoke):
    result = invoke("insights")
    assert "No insights yet" in result.output


def test_export_csv_to_stdout(invoke, db_path):
    seed_breaks(db_path)

    result = invoke("export", "--format", "csv")

    assert result.exit_code == 0
    lines = result.output.splitlines()
    assert lines[0] == "date,breaks_completed,breaks_skipped,total_break_minutes,daily_score"
    assert lines[-1].endswith(",2,1,2,66.7")


def test_export_json_to_file(invoke, db_path, tmp_path):
    seed_breaks(db_path)
    target = tmp_path / "export.json"

    result = invoke("export", "--format", "json", "--output", str(target))

    assert result.exit_code == 0
    data = json.loads(target.read_text())
    assert data["version"] == 1
    assert data["summary"]["total_breaks"] == 2


def test_reset_stats(invoke, db_path):
    seed_breaks(db_path)

    result = invoke("reset-stats", "--yes")

    assert result.exit_code == 0
    ledger = AdherenceLedger(KeyValueStore(db_path), persist_async=False)
    assert ledger.today_stats().attempts == 0
    ledger.close()


def test_unreachable_threshold_warns(invoke, db_path):
    result = invoke("config", "set-threshold", "500")

    assert result.exit_code == 0
    assert "never trigger" in result.output
    assert load_pause_config(KeyValueStore(db_path)).pause_threshold == 500


def test_whitelist_and_signal_toggles(invoke, db_path):
    invoke("config", "whitelist", "add", "com.slack.Slack")
    invoke("config", "signal", "disable", "focus_mode_active")

    config = load_pause_config(KeyValueStore(db_path))
    assert config.whitelisted_apps == {"com.slack.Slack"}
    assert config.disabled_signals == {PauseSignal.FOCUS_MODE_ACTIVE}

    invoke("config", "whitelist", "remove", "com.slack.Slack")
    assert load_pause_config(KeyValueStore(db_path)).whitelisted_apps == set()


def test_conservative_preset_keeps_whitelist(invoke, db_path):
    invoke("config", "whitelist", "add", "com.slack.Slack")

    result = invoke("config", "preset", "conservative")

    assert result.exit_code == 0
    config = load_pause_config(KeyValueStore(db_path))
    assert config.pause_threshold == 80
    assert config.detect_focus_mode is False
    assert config.whitelisted_apps == {"com.slack.Slack"}


def test_enforcement_level(invoke, db_path):
    result = invoke("config", "enforcement", "strict", "--adjust-warning")

    assert result.exit_code == 0
    preferences = load_timer_preferences(KeyValueStore(db_path))
    assert preferences.enforcement_level == EnforcementLevel.STRICT
    assert preferences.allow_skip_break is False
    assert preferences.max_postpones == 1
    assert preferences.pre_break_seconds == 5


def test_config_show(invoke):
    result = invoke("config", "show")
    assert result.exit_code == 0
    assert "pause_threshold" in result.output


def test_quiet_hours(invoke, db_path):
    result = invoke("config", "quiet-hours", "--start", "8", "--end", "16", "--days", "0,1,2,3,4")

    assert result.exit_code == 0
    assert "restarted" in result.output
    preferences = load_timer_preferences(KeyValueStore(db_path))
    assert preferences.quiet_hours_enabled
    assert (preferences.working_hours_start, preferences.working_hours_end) == (8, 16)
    assert preferences.active_days == {0, 1, 2, 3, 4}

    invoke("config", "quiet-hours", "--off")
    assert load_timer_preferences(KeyValueStore(db_path)).quiet_hours_enabled is False


def test_quiet_hours_rejects_bad_days(invoke):
    assert invoke("config", "quiet-hours", "--days", "mon,tue").exit_code == 2
    assert invoke("config", "quiet-hours", "--days", "0,9").exit_code == 2


def test_zero_threshold_is_rejected(invoke):
    assert invoke("config", "set-threshold", "0").exit_code == 2
