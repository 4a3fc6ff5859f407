"""Application wiring - logging, database and the default account service"""

from pathlib import Path
from typing import Optional
import logging

from authcore.config import settings
from authcore.core.database import init_db
from authcore.services.account_service import AccountService
from authcore.services.email_service import EmailSender

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    """Log to the configured file and to stderr"""
    # Ensure log directory exists
    log_file = settings.get_log_file()
    Path(log_file).parent.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler()
        ]
    )


def startup(email_sender: Optional[EmailSender] = None) -> AccountService:
    """
    Validate settings, ensure tables exist and build the account service

    Args:
        email_sender: Delivery backend; defaults to logging only

    Returns:
        AccountService ready for use with sessions from SessionLocal
    """
    configure_logging()
    settings.validate_security_settings()
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    logger.info(f"Environment: {settings.ENVIRONMENT}")

    try:
        init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise

    return AccountService(email_sender=email_sender)
