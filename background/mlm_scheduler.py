# background/mlm_scheduler.py
"""
MLM Scheduler - handles all time-based MLM operations.
Uses APScheduler for professional task scheduling.

Jobs (SCHEDULER_TIMEZONE):
    00:00  daily income
    00:30  investment maturities
    12:00  daily matrix (team) income

Every job is safe to re-run: the services skip members already credited
for the period, so a missed or repeated run never pays twice.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Dict, Optional
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from config import Config
from core.db import get_db_session_ctx
from mlm_system.services.daily_income_service import DailyIncomeService
from mlm_system.services.investment_service import InvestmentService
from mlm_system.utils.time_machine import timeMachine

logger = logging.getLogger(__name__)


class MLMScheduler:
    """
    Background scheduler for MLM operations.
    Uses APScheduler for reliable task scheduling.
    """

    def __init__(self, timezone_name: Optional[str] = None):
        """
        Initialize scheduler.

        Args:
            timezone_name: Cron timezone, SCHEDULER_TIMEZONE by default
        """
        self.isRunning = False
        self.timezone = timezone_name or Config.get(Config.SCHEDULER_TIMEZONE, "UTC")

        # Create APScheduler instance
        self.scheduler = AsyncIOScheduler(
            timezone=self.timezone,
            job_defaults={
                'coalesce': True,  # Combine missed runs into one
                'max_instances': 1,  # Only one instance of each job at a time
                'misfire_grace_time': 300  # 5 minutes grace period
            }
        )

        # Statistics
        self.stats = {
            "tasksExecuted": 0,
            "errors": 0,
            "lastError": None,
            "startedAt": None,
            "lastExecutedAt": None,
            "lastDailyIncome": None,
            "lastDailyMatrixIncome": None,
            "lastMaturities": None
        }

    def registerJobs(self):
        """Add all cron jobs (idempotent, replaces existing ones)."""

        # ═══════════════════════════════════════════════════════════════
        # JOB 1: Daily income (every day at 00:00)
        # ═══════════════════════════════════════════════════════════════
        self.scheduler.add_job(
            func=self._safe_daily_income_wrapper,
            trigger=CronTrigger(hour=0, minute=0, timezone=self.timezone),
            id='daily_income',
            name='Daily Income (00:00)',
            replace_existing=True
        )
        logger.info(f"✓ Job registered: Daily Income (00:00 {self.timezone})")

        # ═══════════════════════════════════════════════════════════════
        # JOB 2: Investment maturities (every day at 00:30)
        # ═══════════════════════════════════════════════════════════════
        self.scheduler.add_job(
            func=self._safe_maturities_wrapper,
            trigger=CronTrigger(hour=0, minute=30, timezone=self.timezone),
            id='investment_maturities',
            name='Investment Maturities (00:30)',
            replace_existing=True
        )
        logger.info(f"✓ Job registered: Investment Maturities (00:30 {self.timezone})")

        # ═══════════════════════════════════════════════════════════════
        # JOB 3: Daily matrix income (every day at 12:00)
        # ═══════════════════════════════════════════════════════════════
        self.scheduler.add_job(
            func=self._safe_daily_matrix_wrapper,
            trigger=CronTrigger(hour=12, minute=0, timezone=self.timezone),
            id='daily_matrix_income',
            name='Daily Matrix Income (12:00)',
            replace_existing=True
        )
        logger.info(f"✓ Job registered: Daily Matrix Income (12:00 {self.timezone})")

    async def start(self):
        """Start scheduler with all jobs."""
        if self.isRunning:
            logger.warning("MLM Scheduler already running")
            return

        logger.info("=" * 60)
        logger.info("Starting MLM Scheduler with APScheduler")
        logger.info("=" * 60)

        self.isRunning = True
        self.stats["startedAt"] = datetime.now(timezone.utc)

        self.registerJobs()

        # Start the scheduler
        self.scheduler.start()

        logger.info("=" * 60)
        logger.info("✅ MLM Scheduler started successfully")
        logger.info(f"Active jobs: {len(self.scheduler.get_jobs())}")
        logger.info("=" * 60)

    async def stop(self):
        """Stop scheduler gracefully."""
        if not self.isRunning:
            return

        logger.info("Stopping MLM Scheduler...")
        self.isRunning = False

        # Shutdown scheduler
        if self.scheduler.running:
            self.scheduler.shutdown(wait=True)

        logger.info("✓ MLM Scheduler stopped")

    # ═══════════════════════════════════════════════════════════════════
    # SAFE WRAPPERS (error handling for APScheduler jobs)
    # ═══════════════════════════════════════════════════════════════════

    async def _safe_daily_income_wrapper(self):
        """Safe wrapper for daily income."""
        try:
            await self.executeDailyIncome()
        except Exception as e:
            self._recordError("daily income", e)

    async def _safe_daily_matrix_wrapper(self):
        """Safe wrapper for daily matrix income."""
        try:
            await self.executeDailyMatrixIncome()
        except Exception as e:
            self._recordError("daily matrix income", e)

    async def _safe_maturities_wrapper(self):
        """Safe wrapper for investment maturities."""
        try:
            await self.executeInvestmentMaturities()
        except Exception as e:
            self._recordError("investment maturities", e)

    def _recordError(self, jobName: str, error: Exception):
        logger.error(f"Error in {jobName} job: {error}", exc_info=True)
        self.stats["errors"] += 1
        self.stats["lastError"] = str(error)

    # ═══════════════════════════════════════════════════════════════════
    # JOBS
    # ═══════════════════════════════════════════════════════════════════

    async def executeDailyIncome(self) -> Dict:
        """Credit daily income for today."""
        logger.info(f"Executing daily income for {timeMachine.today}")
        result = await asyncio.to_thread(self._runDailyIncome)
        self._recordRun("lastDailyIncome", result)
        return result

    async def executeDailyMatrixIncome(self) -> Dict:
        """Credit daily matrix income for today."""
        logger.info(f"Executing daily matrix income for {timeMachine.today}")
        result = await asyncio.to_thread(self._runDailyMatrixIncome)
        self._recordRun("lastDailyMatrixIncome", result)
        return result

    async def executeInvestmentMaturities(self) -> Dict:
        """Pay matured investments."""
        logger.info(f"Executing investment maturities at {timeMachine.now}")
        result = await asyncio.to_thread(self._runMaturities)
        self._recordRun("lastMaturities", result)
        return result

    def _runDailyIncome(self) -> Dict:
        with get_db_session_ctx() as session:
            return DailyIncomeService(session).processDailyIncome()

    def _runDailyMatrixIncome(self) -> Dict:
        with get_db_session_ctx() as session:
            return DailyIncomeService(session).processDailyMatrixIncome()

    def _runMaturities(self) -> Dict:
        with get_db_session_ctx() as session:
            return InvestmentService(session).processMaturities()

    def _recordRun(self, statKey: str, result: Dict):
        self.stats["tasksExecuted"] += 1
        self.stats["lastExecutedAt"] = datetime.now(timezone.utc)
        self.stats[statKey] = result

    def getStatus(self) -> dict:
        """Get scheduler status."""
        jobs_info = []
        for job in self.scheduler.get_jobs():
            next_run = getattr(job, "next_run_time", None)
            jobs_info.append({
                "id": job.id,
                "name": job.name,
                "next_run": next_run.isoformat() if next_run else None
            })

        return {
            "isRunning": self.isRunning,
            "schedulerRunning": self.scheduler.running,
            "timezone": self.timezone,
            "currentTime": timeMachine.now.isoformat(),
            "isTestMode": timeMachine._isTestMode,
            "stats": self.stats,
            "jobs": jobs_info
        }


# Global scheduler instance (created at application startup)
scheduler: Optional[MLMScheduler] = None
