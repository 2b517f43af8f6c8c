from celery import Celery
from celery.schedules import crontab
from celery.signals import setup_logging as celery_setup_logging

from kabuchart.core.config import settings
from kabuchart.core.logging import setup_logging

app = Celery("kabuchart")
app.conf.broker_url = settings.CELERY_BROKER_URL
app.conf.result_backend = settings.CELERY_RESULT_BACKEND
app.conf.timezone = settings.CELERY_TIMEZONE
app.conf.enable_utc = False


@celery_setup_logging.connect
def configure_worker_logging(**kwargs) -> None:
    setup_logging()


app.conf.include = [
    "kabuchart.tasks.market_data",
    "kabuchart.tasks.timeframes",
    "kabuchart.tasks.universe_refresh",
]

app.conf.beat_schedule = {
    "ingest-daily-bars": {
        "task": "kabuchart.tasks.market_data.ingest_daily_bars",
        "schedule": crontab(
            day_of_week="mon-fri",
            hour=settings.DAILY_INGEST_HOUR,
            minute=settings.DAILY_INGEST_MINUTE,
        ),
    },
    "update-timeframes": {
        # Runs every day: Saturdays finalize the prior week, the 1st the prior month
        "task": "kabuchart.tasks.timeframes.update_timeframes",
        "schedule": crontab(
            hour=settings.TIMEFRAME_UPDATE_HOUR,
            minute=settings.TIMEFRAME_UPDATE_MINUTE,
        ),
    },
    "refresh-ticker-master": {
        "task": "kabuchart.tasks.universe_refresh.refresh_ticker_master",
        "schedule": crontab(
            day_of_week=settings.TICKER_MASTER_REFRESH_DAY,
            hour=settings.TICKER_MASTER_REFRESH_HOUR,
            minute=settings.TICKER_MASTER_REFRESH_MINUTE,
        ),
    },
}
