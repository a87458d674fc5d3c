"""
Shared pytest fixtures for the tandem tests.

This module provides:
- ``config``: default configuration with zero retry delays
- ``harness``: every component wired to in-memory stores and fakes
- ``community``: the default community, detected and in SHADOW mode
- ``mock_tracer``: a tracer that records spans
"""

from __future__ import annotations

import pytest
import pytest_asyncio

from tandem.config import CoexistenceConfig
from tandem.observability import MockTracer
from tandem.testing import CoexistenceHarness, fast_config
from tests.fixtures import COMMUNITY_ID, COMMUNITY_NAME, seed_platform


@pytest.fixture
def config() -> CoexistenceConfig:
    return fast_config()


@pytest.fixture
def harness(config: CoexistenceConfig) -> CoexistenceHarness:
    return CoexistenceHarness(config)


@pytest.fixture
def mock_tracer() -> MockTracer:
    return MockTracer()


@pytest_asyncio.fixture
async def community(harness: CoexistenceHarness) -> str:
    """
    The default community layout, seeded in SHADOW mode with its
    incumbent detected. Members are added by each test.
    """
    seed_platform(harness.platform)
    harness.seed_state(COMMUNITY_ID, name=COMMUNITY_NAME)
    profile = await harness.profiler.detect_incumbent(COMMUNITY_ID)
    assert profile is not None
    harness.platform.reset_calls()
    return COMMUNITY_ID
