"""
Aggregate statistics over crawl sessions for dashboards.
"""

from datetime import datetime, timedelta
from typing import Dict, Any, Iterable, List, Optional

from .models import CrawlSession, SessionStatus, ScrapingProvider


def _success_rate(completed: int, failed: int) -> float:
    finished = completed + failed
    return round(completed / finished * 100, 2) if finished else 0.0


def _average(values: List[float]) -> float:
    return round(sum(values) / len(values), 2) if values else 0.0


def build_session_stats(sessions: Iterable[CrawlSession]) -> Dict[str, Any]:
    """
    Summarize sessions.

    Args:
        sessions: Sessions to summarize (live and historical)

    Returns:
        Dictionary with totals, success rate and average duration in ms
    """
    sessions = list(sessions)
    by_status = {status: 0 for status in SessionStatus}
    for session in sessions:
        by_status[session.status] += 1

    durations = [s.duration_ms for s in sessions if s.duration_ms is not None]

    return {
        "total_sessions": len(sessions),
        "active_sessions": by_status[SessionStatus.RUNNING],
        "paused_sessions": by_status[SessionStatus.PAUSED],
        "completed_sessions": by_status[SessionStatus.COMPLETED],
        "failed_sessions": by_status[SessionStatus.FAILED],
        "stopped_sessions": by_status[SessionStatus.STOPPED],
        "total_tenders_scraped": sum(s.tenders_scraped for s in sessions),
        "total_tenders_saved": sum(s.tenders_saved for s in sessions),
        "average_duration_ms": _average(durations),
        "success_rate": _success_rate(by_status[SessionStatus.COMPLETED], by_status[SessionStatus.FAILED]),
    }


def build_overview(sessions: Iterable[CrawlSession], now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Build the dashboard overview: provider breakdown, status distribution,
    last 24 hours of activity and performance averages.
    """
    now = now or datetime.now()
    sessions = sorted(sessions, key=lambda s: s.last_activity_at, reverse=True)
    total = len(sessions)

    providers = []
    for provider in ScrapingProvider:
        subset = [s for s in sessions if s.provider is provider]
        completed = sum(1 for s in subset if s.status is SessionStatus.COMPLETED)
        failed = sum(1 for s in subset if s.status is SessionStatus.FAILED)
        providers.append({
            "provider": provider.value,
            "total_sessions": len(subset),
            "active_sessions": sum(1 for s in subset if s.status is SessionStatus.RUNNING),
            "completed_sessions": completed,
            "failed_sessions": failed,
            "success_rate": _success_rate(completed, failed),
            "total_tenders_saved": sum(s.tenders_saved for s in subset),
            "total_pages_navigated": sum(s.pages_navigated for s in subset),
        })

    status_distribution = []
    for status in SessionStatus:
        count = sum(1 for s in sessions if s.status is status)
        status_distribution.append({
            "status": status.value,
            "count": count,
            "percentage": round(count / total * 100, 2) if total else 0.0,
        })

    cutoff = now - timedelta(hours=24)
    recent = [s for s in sessions if s.last_activity_at >= cutoff]
    completed_sessions = [s for s in sessions if s.status is SessionStatus.COMPLETED]

    return {
        "summary": build_session_stats(sessions),
        "providers": providers,
        "status_distribution": status_distribution,
        "recent_activity": {
            "sessions_last_24h": len(recent),
            "tenders_saved_last_24h": sum(s.tenders_saved for s in recent),
            "sessions": [s.to_dict() for s in recent],
        },
        "active_sessions": [s.to_dict() for s in sessions if s.status is SessionStatus.RUNNING],
        "performance": {
            "average_progress": _average([s.progress_percent for s in sessions]),
            "average_pages_per_minute": _average([s.pages_per_minute for s in completed_sessions]),
            "average_response_time": _average([s.avg_response_time for s in completed_sessions]),
        },
        "generated_at": now.isoformat(),
    }
