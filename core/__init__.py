#!/usr/bin/env python3
"""
Core Module for Microservices Architecture

Shared infrastructure components for the benefit engine microservices.

COMPONENTS:
    - config/: Dataclass configuration loaded from the environment (python-dotenv)
    - logger.py: Process-wide logging setup
    - postgres_client.py: asyncpg pool wrapper
    - nats_client.py: NATS JetStream event bus

USAGE:
    from core.config import get_settings
    from core.nats_client import get_event_bus

    settings = get_settings()
    bus = await get_event_bus("benefit_service")
"""

__version__ = "2.0.0"
