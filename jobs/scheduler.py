"""Background job scheduler for escrow expiry and challenge housekeeping"""

import logging
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.memory import MemoryJobStore

from jobs.challenge_cleanup import schedule_challenge_cleanup
from jobs.escrow_timeout_sweep import schedule_escrow_timeout_sweep
from services.challenge_service import ChallengeService
from services.escrow_service import EscrowService

logger = logging.getLogger(__name__)


class LedgerScheduler:
    """
    Runs the periodic jobs on background threads that share the database pool
    with request handlers.
    """

    def __init__(
        self,
        escrow_service: Optional[EscrowService] = None,
        challenge_service: Optional[ChallengeService] = None,
    ):
        self.escrow_service = escrow_service
        self.challenge_service = challenge_service

        jobstores = {
            'default': MemoryJobStore()
        }
        executors = {
            'default': ThreadPoolExecutor(max_workers=2)
        }
        job_defaults = {
            'coalesce': True,  # Global coalescing to prevent job pileup
            'max_instances': 1,  # A slow sweep never overlaps the next tick
            'misfire_grace_time': 30
        }

        self.scheduler = BackgroundScheduler(
            jobstores=jobstores,
            executors=executors,
            job_defaults=job_defaults,
            timezone='UTC'
        )

    def setup_jobs(self):
        schedule_escrow_timeout_sweep(self.scheduler, self.escrow_service)
        schedule_challenge_cleanup(self.scheduler, self.challenge_service)

    def start(self):
        if self.scheduler.running:
            logger.warning("⚠️ Scheduler already running")
            return
        self.setup_jobs()
        self.scheduler.start()
        logger.info(f"🚀 Scheduler started with {len(self.scheduler.get_jobs())} jobs")

    def shutdown(self, wait: bool = True):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=wait)
            logger.info("🛑 Scheduler stopped")
