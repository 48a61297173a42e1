"""
Wallet Challenge Cleanup Job
Deletes expired challenges past the retention window
"""

import logging
from typing import Optional

from config import Config
from services.challenge_service import ChallengeService, challenge_service

logger = logging.getLogger(__name__)


def cleanup_expired_challenges(service: Optional[ChallengeService] = None) -> int:
    try:
        removed = (service or challenge_service).purge_expired()
        if removed > 0:
            logger.info(f"✅ CHALLENGE_CLEANUP: Removed {removed} expired challenges")
        else:
            logger.debug("✅ CHALLENGE_CLEANUP: No expired challenges to remove")
        return removed
    except Exception as e:
        logger.error(f"❌ CHALLENGE_CLEANUP: Cleanup failed - {e}", exc_info=True)
        return 0


def schedule_challenge_cleanup(scheduler, service: Optional[ChallengeService] = None):
    scheduler.add_job(
        cleanup_expired_challenges,
        trigger='interval',
        minutes=Config.CHALLENGE_CLEANUP_INTERVAL_MINUTES,
        kwargs={"service": service},
        id='wallet_challenge_cleanup',
        name='🧹 Wallet Challenge Cleanup - Remove Expired Nonces',
        replace_existing=True,
        max_instances=1,
    )
    logger.info(
        f"✅ Scheduled wallet challenge cleanup (every {Config.CHALLENGE_CLEANUP_INTERVAL_MINUTES} minutes)"
    )
