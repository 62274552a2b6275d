"""
Root conftest.py - Global configuration for all test layers.

Test Layers:
    - component/: Component tests (FastAPI app with mocked dependencies)
    - unit/     : Unit tests (service logic over in-memory mocks)
    - contracts/: Test data factories shared by both layers
"""
import os
import sys

import pytest

# Set testing environment BEFORE any project imports
os.environ.setdefault("ENV", "testing")
os.environ.setdefault("NATS_ENABLED", "false")

# Add project root to path
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)


# =============================================================================
# Test Configuration
# =============================================================================

class TestConfig:
    """Centralized test configuration"""

    SERVICE_NAME = "benefit_service"
    SERVICE_PORT = 8260
    BASE_PATH = "/api/v1/benefits"

    @classmethod
    def get_service_url(cls) -> str:
        return f"http://localhost:{cls.SERVICE_PORT}"


@pytest.fixture(scope="session")
def test_config() -> TestConfig:
    """Provide test configuration"""
    return TestConfig()
