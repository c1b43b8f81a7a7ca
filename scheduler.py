import logging
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import select

from config import get_settings
from database import session_scope
from models import Bill
from recurrence import BillPaymentEngine


logger = logging.getLogger(__name__)


def run_bill_maintenance(session) -> dict[str, int]:
    user_ids = session.scalars(
        select(Bill.user_id).where(Bill.is_active.is_(True)).distinct()
    ).all()
    engine = BillPaymentEngine(session)
    created = 0
    transitioned = 0
    for user_id in user_ids:
        created += engine.ensure_upcoming_payments(user_id)
        transitioned += engine.update_payment_statuses(user_id)
    return {"users": len(user_ids), "created": created, "transitioned": transitioned}


class SchedulerManager:
    def __init__(self) -> None:
        settings = get_settings()
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def _run_job(self, source: str = "manual") -> None:
        logger.info(f"scheduler_run: source={source}")
        with session_scope() as session:
            result = run_bill_maintenance(session)
            logger.info(
                f"scheduler_run: source={source} users={result['users']} "
                f"created={result['created']} transitioned={result['transitioned']}"
            )

    def start(self) -> None:
        self._run_job("startup")

        trigger = CronTrigger(hour=0, minute=5)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=["daily_00:05"],
            id="bill_maintenance_daily",
            replace_existing=True,
            misfire_grace_time=3600,
        )

        trigger = IntervalTrigger(hours=6)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=["six_hourly_safety_net"],
            id="bill_maintenance_safety",
            replace_existing=True,
            misfire_grace_time=300,
        )

        self.scheduler.start()
        logger.info("Scheduler started with daily 00:05 run and 6-hourly safety net")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
