#!/usr/bin/env python3
"""Application configuration aggregate"""
import os
from dataclasses import dataclass, field

from .benefit_config import BenefitConfig
from .infra_config import InfraConfig
from .logging_config import LoggingConfig

def _bool(val: str) -> bool:
    return val.lower() == "true"


@dataclass
class AppConfig:
    """Main configuration with all sub-configs"""

    # Environment
    environment: str = "development"
    debug: bool = False

    # Default service settings
    default_host: str = "0.0.0.0"

    # Sub-configurations
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    infrastructure: InfraConfig = field(default_factory=InfraConfig)
    benefit: BenefitConfig = field(default_factory=BenefitConfig)

    @classmethod
    def from_env(cls) -> 'AppConfig':
        """Load complete configuration from environment"""
        env = os.getenv("ENV") or os.getenv("ENVIRONMENT", "development")
        return cls(
            # Environment
            environment=env,
            debug=_bool(os.getenv("DEBUG", "true" if env == "development" else "false")),

            # Default service settings
            default_host=os.getenv("HOST", "0.0.0.0"),

            # Load sub-configs
            logging=LoggingConfig.from_env(),
            infrastructure=InfraConfig.from_env(),
            benefit=BenefitConfig.from_env(),
        )
