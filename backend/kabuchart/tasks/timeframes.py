import asyncio
import logging
from datetime import date
from typing import Optional

from kabuchart.core.redis import StreamNames, get_redis
from kabuchart.scheduler.celery_app import app
from kabuchart.services.timeframe_service import TimeframeService

logger = logging.getLogger(__name__)


@app.task(name="kabuchart.tasks.timeframes.update_timeframes")
def update_timeframes(target_date: Optional[str] = None) -> dict[str, object]:
    """
    Daily weekly/monthly update: current periods always, prior week on
    Saturdays, prior month on the 1st.
    """
    as_of = date.fromisoformat(target_date) if target_date else None
    summary = asyncio.run(TimeframeService().update_daily(as_of=as_of))
    result = {"status": "completed", **summary.as_dict()}

    try:
        get_redis().xadd(StreamNames.TIMEFRAMES, {
            "event_type": "timeframes_updated",
            **{key: str(value) for key, value in summary.as_dict().items()},
        })
    except Exception as e:
        logger.error(f"Failed to publish stream event: {e}")

    return result


@app.task(name="kabuchart.tasks.timeframes.rebuild_timeframes")
def rebuild_timeframes(years_back: Optional[int] = None) -> dict[str, object]:
    """On-demand full rebuild of weekly/monthly history."""
    summary = asyncio.run(TimeframeService().rebuild(years_back=years_back))
    return {"status": "completed", **summary.as_dict()}
