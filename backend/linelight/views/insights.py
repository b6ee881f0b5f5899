"""System-wide pain score per line, derived from the line summaries."""
import math
from datetime import datetime, timezone

from linelight.cache.resource_cache import ResourceCache
from linelight.views.lines import build_line_summaries
from linelight.views.models import LineInsight, LineSummary, SegmentTroubleSummary, SystemInsights

BASE_PAIN = 40
ALERT_PAIN = 30
VEHICLE_SHORTFALL_CAP = 10
MAX_TROUBLE_SEGMENTS = 5


def pain_score(summary: LineSummary) -> int:
    """Base 40, +30 with alerts, + up to 10 for a thin fleet; capped at 100."""
    shortfall = max(0, VEHICLE_SHORTFALL_CAP - min(summary.vehicle_count, VEHICLE_SHORTFALL_CAP))
    return min(100, BASE_PAIN + (ALERT_PAIN if summary.has_alerts else 0) + shortfall)


def build_system_insights(cache: ResourceCache) -> SystemInsights:
    summaries = build_line_summaries(cache)
    insights = [
        LineInsight(
            line_id=s.line_id,
            display_name=s.display_name,
            mode=s.mode,
            pain_score=pain_score(s),
            active_alerts=1 if s.has_alerts else 0,
            active_vehicles=s.vehicle_count,
        )
        for s in summaries.lines
    ]
    trouble = [
        SegmentTroubleSummary(
            line_id=insight.line_id,
            summary=f"{insight.display_name} has active alerts",
            severity=min(10, math.floor(insight.pain_score / 10 + 0.5)),
        )
        for insight in insights
        if insight.active_alerts
    ]
    return SystemInsights(
        generated_at=datetime.now(timezone.utc),
        lines=insights,
        top_trouble_segments=trouble[:MAX_TROUBLE_SEGMENTS],
    )
