"""Collect and export adherence metrics"""
import csv
import io
import json
import logging
from datetime import date
from typing import Dict, Optional

from smart_break.models.stats import StatsPeriod
from smart_break.services.ledger import AdherenceLedger

logger = logging.getLogger(__name__)

EXPORT_VERSION = 1
CSV_COLUMNS = ["date", "breaks_completed", "breaks_skipped", "total_break_minutes", "daily_score"]


class MetricsCollector:
    """Formats ledger data for display and export"""

    def __init__(self, ledger: AdherenceLedger):
        self.ledger = ledger

    def get_daily_metrics(self, day: Optional[date] = None) -> Dict:
        """Get metrics for a specific date"""
        day = day or self.ledger.clock().date()
        try:
            stats = next((s for s in self.ledger.all_day_stats() if s.day == day), None)
            if stats is None:
                return {"date": day.isoformat(), "tracked": False}
            return {
                "date": day.isoformat(),
                "tracked": True,
                "summary": {
                    "breaks_completed": stats.breaks_completed,
                    "breaks_skipped": stats.breaks_skipped,
                    "short_breaks": stats.short_breaks_completed,
                    "long_breaks": stats.long_breaks_completed,
                    "total_break_minutes": stats.total_break_minutes,
                    "daily_score": round(stats.daily_score, 1),
                },
                "time": {
                    "screen_minutes": stats.screen_minutes,
                    "meeting_minutes": stats.meeting_minutes,
                    "idle_minutes": stats.idle_minutes,
                    "longest_stretch_minutes": stats.longest_stretch_minutes,
                },
                "nudges": {
                    "followed": stats.nudges_followed,
                    "dismissed": stats.nudges_dismissed,
                    "blink_compliance": round(stats.blink_compliance, 2),
                    "posture_compliance": round(stats.posture_compliance, 2),
                },
                "hourly_patterns": dict(enumerate(stats.hourly_breaks)),
            }
        except Exception as e:
            logger.error(f"Error getting daily metrics: {e}")
            return {}

    def get_period_metrics(self, period: StatsPeriod) -> Dict:
        stats = self.ledger.aggregated_stats(period)
        data = stats.model_dump(mode="json")
        data["completion_rate"] = round(stats.completion_rate, 1)
        data["average_score"] = round(stats.average_score, 1)
        return data

    def export_data(self) -> Dict:
        """Everything persisted, as one JSON-ready document"""
        return {
            "export_date": self.ledger.clock().isoformat(),
            "version": EXPORT_VERSION,
            "summary": {
                **self.ledger.weekly_summary(),
                "current_streak": self.ledger.current_streak(),
                "daily_break_goal": self.ledger.daily_break_goal,
            },
            "sessions": [s.model_dump(mode="json") for s in self.ledger.sessions],
            "days": [
                {**s.model_dump(mode="json"), "daily_score": round(s.daily_score, 1)}
                for s in self.ledger.all_day_stats()
            ],
        }

    def export_json(self, indent: int = 2) -> str:
        return json.dumps(self.export_data(), indent=indent)

    def export_csv(self) -> str:
        """One row per day"""
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(CSV_COLUMNS)
        for stats in self.ledger.all_day_stats():
            writer.writerow([
                stats.day.isoformat(),
                stats.breaks_completed,
                stats.breaks_skipped,
                stats.total_break_minutes,
                f"{stats.daily_score:.1f}",
            ])
        return buffer.getvalue()
