"""
Benefit Service Factory

Factory for creating BenefitService with real dependencies.
This is the ONLY module that imports concrete implementations.
"""

import logging
from typing import Optional

from core.config import AppConfig, get_settings

from .benefit_repository import BenefitRepository
from .benefit_service import BenefitService

logger = logging.getLogger(__name__)


def create_benefit_service(
    config: Optional[AppConfig] = None,
    event_bus=None,
) -> BenefitService:
    """
    Create BenefitService with all real dependencies

    Args:
        config: Optional application config (global settings if not provided)
        event_bus: Optional event bus for event publishing

    Returns:
        BenefitService wired to the PostgreSQL repository
    """
    if config is None:
        config = get_settings()

    repository = BenefitRepository(config=config.infrastructure)

    logger.info("BenefitService created with real dependencies")

    return BenefitService(
        repository=repository,
        event_bus=event_bus,
        config=config.benefit,
    )


__all__ = ["create_benefit_service"]
