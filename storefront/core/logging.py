import sys

from loguru import logger

from storefront.core.config import settings


def setup_logging():
    logger.remove()
    logger.add(
        sys.stdout,
        level=settings.LOG_LEVEL,
        serialize=True,
    )
    logger.configure(extra={"service": settings.SERVICE_NAME})
