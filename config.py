"""Configuration management for the trade-finance bookkeeping service"""

import os
import logging
from decimal import Decimal
from typing import List

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)


class Config:
    """Application configuration"""

    # Environment detection: ENVIRONMENT takes absolute priority
    ENVIRONMENT = os.getenv("ENVIRONMENT", "development").lower().strip()
    IS_PRODUCTION = ENVIRONMENT == "production"
    CURRENT_ENVIRONMENT = "production" if IS_PRODUCTION else "development"

    # Database configuration
    # Development and tests fall back to a local SQLite file
    DATABASE_URL = os.getenv("DATABASE_URL") or (None if IS_PRODUCTION else "sqlite:///./tradefin.db")
    if DATABASE_URL and DATABASE_URL.startswith("postgres://"):
        DATABASE_URL = DATABASE_URL.replace("postgres://", "postgresql://", 1)

    if not DATABASE_URL:
        DATABASE_SOURCE = "NOT CONFIGURED"
        logger.error("❌ DATABASE_URL not configured! Please set DATABASE_URL environment variable.")
    elif DATABASE_URL.startswith("sqlite"):
        DATABASE_SOURCE = "SQLite (local)"
    else:
        DATABASE_SOURCE = "PostgreSQL"

    # Connection pool (PostgreSQL only)
    DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "7"))
    DB_MAX_OVERFLOW = int(os.getenv("DB_MAX_OVERFLOW", "15"))
    DB_POOL_TIMEOUT = int(os.getenv("DB_POOL_TIMEOUT", "30"))  # seconds
    DB_POOL_RECYCLE = int(os.getenv("DB_POOL_RECYCLE", "3600"))  # seconds

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

    # Webhook authentication (shared secret sent by the on-chain indexer)
    WEBHOOK_SECRET = os.getenv("WEBHOOK_SECRET")

    # Soroban contracts
    ESCROW_CONTRACT_ID = os.getenv("ESCROW_CONTRACT_ID")
    LOAN_CONTRACT_ID = os.getenv("LOAN_CONTRACT_ID")

    # Wallet challenge settings
    CHALLENGE_TTL_MINUTES = int(os.getenv("CHALLENGE_TTL_MINUTES", "10"))
    CHALLENGE_RETENTION_HOURS = int(os.getenv("CHALLENGE_RETENTION_HOURS", "24"))
    CHALLENGE_MESSAGE_PREFIX = os.getenv("CHALLENGE_MESSAGE_PREFIX", "stellovault")

    # Background jobs
    ENABLE_SCHEDULER = os.getenv("ENABLE_SCHEDULER", "true").lower() == "true"
    ESCROW_SWEEP_INTERVAL_SECONDS = int(os.getenv("ESCROW_SWEEP_INTERVAL_SECONDS", "60"))
    CHALLENGE_CLEANUP_INTERVAL_MINUTES = int(os.getenv("CHALLENGE_CLEANUP_INTERVAL_MINUTES", "60"))

    # Lending
    MIN_COLLATERAL_RATIO = Decimal(os.getenv("MIN_COLLATERAL_RATIO", "1.5"))
    DEFAULT_ASSET_CODE = os.getenv("DEFAULT_ASSET_CODE", "USDC")

    # Escrow listing
    ESCROW_DEFAULT_PAGE_SIZE = int(os.getenv("ESCROW_DEFAULT_PAGE_SIZE", "20"))
    ESCROW_MAX_PAGE_SIZE = int(os.getenv("ESCROW_MAX_PAGE_SIZE", "100"))

    # Notification fan-out
    NOTIFICATION_QUEUE_SIZE = int(os.getenv("NOTIFICATION_QUEUE_SIZE", "1000"))

    @staticmethod
    def validate() -> List[str]:
        """Return a list of configuration problems (empty when fully configured)"""
        problems = []
        if not Config.DATABASE_URL:
            problems.append("DATABASE_URL is not set")
        if not Config.WEBHOOK_SECRET:
            problems.append("WEBHOOK_SECRET is not set - escrow webhook will reject all calls")
        if not Config.ESCROW_CONTRACT_ID:
            problems.append("ESCROW_CONTRACT_ID is not set - escrow creation unavailable")
        if not Config.LOAN_CONTRACT_ID:
            problems.append("LOAN_CONTRACT_ID is not set - loan issuance unavailable")
        if Config.MIN_COLLATERAL_RATIO <= 0:
            problems.append("MIN_COLLATERAL_RATIO must be positive")
        if Config.ESCROW_DEFAULT_PAGE_SIZE > Config.ESCROW_MAX_PAGE_SIZE:
            problems.append("ESCROW_DEFAULT_PAGE_SIZE exceeds ESCROW_MAX_PAGE_SIZE")
        return problems

    @staticmethod
    def log_environment_config():
        """Log the effective configuration without secrets"""
        logger.info("🔧 ENVIRONMENT CONFIGURATION:")
        logger.info(f"   Environment: {Config.CURRENT_ENVIRONMENT}")
        logger.info(f"   Database: {Config.DATABASE_SOURCE}")
        logger.info(f"   Webhook secret: {'configured' if Config.WEBHOOK_SECRET else 'NOT CONFIGURED'}")
        logger.info(f"   Escrow contract: {Config.ESCROW_CONTRACT_ID or 'NOT CONFIGURED'}")
        logger.info(f"   Loan contract: {Config.LOAN_CONTRACT_ID or 'NOT CONFIGURED'}")
        logger.info(f"   Challenge TTL: {Config.CHALLENGE_TTL_MINUTES} minutes")
        logger.info(f"   Escrow sweep interval: {Config.ESCROW_SWEEP_INTERVAL_SECONDS}s")
        logger.info(f"   Min collateral ratio: {Config.MIN_COLLATERAL_RATIO}")

        for problem in Config.validate():
            if Config.IS_PRODUCTION:
                logger.error(f"❌ CONFIG: {problem}")
            else:
                logger.warning(f"⚠️ CONFIG: {problem}")
