"""
Escrow Timeout Sweep Job
Expires ACTIVE escrows whose deadline has passed
"""

import logging
from typing import List, Optional

from config import Config
from services.escrow_service import EscrowService, escrow_service

logger = logging.getLogger(__name__)


def run_escrow_timeout_sweep(service: Optional[EscrowService] = None) -> List[str]:
    """
    One sweep tick. Errors are logged and swallowed so the next tick still runs.
    """
    try:
        expired = (service or escrow_service).timeout_sweep()
        if expired:
            logger.info(f"✅ ESCROW_SWEEP: Expired {len(expired)} escrows")
        else:
            logger.debug("✅ ESCROW_SWEEP: No lapsed escrows")
        return expired
    except Exception as e:
        logger.error(f"❌ ESCROW_SWEEP: Sweep failed - {e}", exc_info=True)
        return []


def schedule_escrow_timeout_sweep(scheduler, service: Optional[EscrowService] = None):
    """Schedule the sweep every ESCROW_SWEEP_INTERVAL_SECONDS"""
    scheduler.add_job(
        run_escrow_timeout_sweep,
        trigger='interval',
        seconds=Config.ESCROW_SWEEP_INTERVAL_SECONDS,
        kwargs={"service": service},
        id='escrow_timeout_sweep',
        name='⏰ Escrow Timeout Sweep - Expire Lapsed Escrows',
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    logger.info(f"✅ Scheduled escrow timeout sweep (every {Config.ESCROW_SWEEP_INTERVAL_SECONDS}s)")
