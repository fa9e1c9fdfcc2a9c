"""
Shared fixtures
"""

import pytest

from dividend_router.distribution_config import DistributionConfig

from helpers import RecordingSleep


@pytest.fixture
def config() -> DistributionConfig:
    return DistributionConfig(batch_delay_seconds=0, backoff_base_seconds=0)


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()
