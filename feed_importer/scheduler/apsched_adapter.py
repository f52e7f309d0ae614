"""APScheduler wrapper driving fetch → import → finalize cycles."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from ..config import ScheduleConfig, ScheduleType
from ..logging_conf import configure_logging

CYCLE_JOB_ID = "import::cycle"
CONTINUATION_JOB_ID = "import::continue"


class APSchedulerAdapter:
    """Manage APScheduler jobs for the import cycle."""

    def __init__(self) -> None:
        self.scheduler = BackgroundScheduler()
        self.logger = configure_logging().bind(component="scheduler")
        self.started = False

    def start(self) -> None:
        if not self.started:
            self.scheduler.start()
            self.started = True
            self.logger.info("apscheduler_started")

    def shutdown(self) -> None:
        if self.started:
            self.scheduler.shutdown(wait=False)
            self.started = False
            self.logger.info("apscheduler_stopped")

    def schedule_cycle(self, schedule: ScheduleConfig, callback: Callable[[], None]) -> None:
        trigger = self._build_trigger(schedule)
        self.scheduler.add_job(callback, trigger=trigger, id=CYCLE_JOB_ID, replace_existing=True)
        self.logger.info("cycle_scheduled", schedule=schedule.model_dump(mode="json"))

    def schedule_continuation(self, delay_seconds: float, callback: Callable[[], None]) -> None:
        run_date = datetime.now() + timedelta(seconds=delay_seconds)
        self.scheduler.add_job(
            callback,
            trigger=DateTrigger(run_date=run_date),
            id=CONTINUATION_JOB_ID,
            replace_existing=True,
        )
        self.logger.info("continuation_scheduled", delay_seconds=delay_seconds)

    def remove_job(self, job_id: str) -> None:
        try:
            self.scheduler.remove_job(job_id)
        except JobLookupError:
            self.logger.warning("job_not_found", job_id=job_id)

    def _build_trigger(self, schedule: ScheduleConfig):
        if schedule.type is ScheduleType.CRON:
            return CronTrigger.from_crontab(str(schedule.value))
        if schedule.type is ScheduleType.INTERVAL:
            if isinstance(schedule.value, (int, float)):
                return IntervalTrigger(seconds=float(schedule.value))
            if isinstance(schedule.value, dict):
                return IntervalTrigger(**schedule.value)
            raise ValueError("Interval schedule requires seconds or kwargs dict")
        if schedule.type is ScheduleType.ONCE:
            if schedule.value:
                run_date = datetime.fromisoformat(str(schedule.value))
            else:
                run_date = datetime.now()
            return DateTrigger(run_date=run_date)
        raise ValueError(f"Unknown schedule type: {schedule.type}")

    def list_jobs(self) -> list[dict]:
        jobs = []
        for job in self.scheduler.get_jobs():
            jobs.append(
                {
                    "id": job.id,
                    "next_run_time": job.next_run_time,
                    "trigger": str(job.trigger),
                }
            )
        return jobs


class ImportDriver:
    """Trigger side of the import: re-invokes paused runs and finalizes complete ones."""

    def __init__(self, orchestrator, adapter: APSchedulerAdapter, schedule: ScheduleConfig) -> None:
        self.orchestrator = orchestrator
        self.adapter = adapter
        self.schedule = schedule
        self.failed_attempts = 0
        self.logger = configure_logging().bind(component="import_driver")

    def register(self) -> None:
        self.adapter.schedule_cycle(self.schedule, self.start_cycle)
        self.adapter.start()

    def start_cycle(self) -> None:
        """Refresh feeds, then begin importing unless a run is still in progress."""

        status = self.orchestrator.status()
        if status.get("status") in ("running", "paused") and not status.get("complete"):
            self.logger.info("cycle_skipped_run_in_progress", processed=status.get("processed"))
            self.continue_import()
            return
        self.orchestrator.run_fetch_and_normalize()
        self.failed_attempts = 0
        self.continue_import()

    def continue_import(self) -> str:
        """Run one batch and decide what happens next; return the decision."""

        result = self.orchestrator.run_batch()
        if not result.success:
            self.failed_attempts += 1
            if self.failed_attempts > self.schedule.max_failed_attempts:
                self.logger.error(
                    "import_needs_attention",
                    message="Import failed repeatedly; resume later",
                    error=result.message,
                    attempts=self.failed_attempts,
                )
                return "stopped"
            self.adapter.schedule_continuation(self.schedule.continuation_delay_seconds, self.continue_import)
            return "retry"
        self.failed_attempts = 0
        if result.status == "cancelled":
            self.logger.info("import_cancelled_stop")
            return "cancelled"
        if result.complete:
            if result.total > 0:
                purge = self.orchestrator.finalize()
                self.logger.info("import_finalized", stale=purge.stale, message=purge.message)
            return "complete"
        self.adapter.schedule_continuation(self.schedule.continuation_delay_seconds, self.continue_import)
        return "continue"


__all__ = ["APSchedulerAdapter", "ImportDriver", "CYCLE_JOB_ID", "CONTINUATION_JOB_ID"]
