#!/usr/bin/env python3
"""Benefit engine configuration

Tunables for catalog composition, the read-through cache and the
eligibility windows.
"""
import os
from dataclasses import dataclass

def _int(val: str, default: int) -> int:
    try:
        return int(val) if val else default
    except ValueError:
        return default


@dataclass
class BenefitConfig:
    """Benefit engine settings"""

    service_port: int = 8260

    # Read-through cache
    cache_ttl_seconds: int = 300
    cache_max_entries: int = 1024

    # Catalog composition
    public_benefit_limit: int = 20
    default_list_limit: int = 50
    in_filter_batch_size: int = 10

    # Eligibility windows
    new_window_days: int = 7
    expiring_window_days: int = 7

    # History
    history_default_limit: int = 50

    @classmethod
    def from_env(cls) -> 'BenefitConfig':
        """Load benefit engine config from environment"""
        return cls(
            service_port=_int(os.getenv("BENEFIT_SERVICE_PORT") or os.getenv("PORT", "8260"), 8260),
            cache_ttl_seconds=_int(os.getenv("BENEFIT_CACHE_TTL_SECONDS", "300"), 300),
            cache_max_entries=_int(os.getenv("BENEFIT_CACHE_MAX_ENTRIES", "1024"), 1024),
            public_benefit_limit=_int(os.getenv("BENEFIT_PUBLIC_LIMIT", "20"), 20),
            default_list_limit=_int(os.getenv("BENEFIT_DEFAULT_LIMIT", "50"), 50),
            # The store rejects larger "value in set" filters
            in_filter_batch_size=max(1, min(_int(os.getenv("BENEFIT_IN_FILTER_BATCH", "10"), 10), 10)),
            new_window_days=_int(os.getenv("BENEFIT_NEW_WINDOW_DAYS", "7"), 7),
            expiring_window_days=_int(os.getenv("BENEFIT_EXPIRING_WINDOW_DAYS", "7"), 7),
            history_default_limit=_int(os.getenv("BENEFIT_HISTORY_LIMIT", "50"), 50),
        )
