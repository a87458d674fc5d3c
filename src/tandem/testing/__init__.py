"""
Test utilities for tandem.

Components:
    RecordingPlatform: In-memory platform that records mutating calls and
        can inject failures and delays.
    StaticEligibilityProvider / StaticIdentityResolver: Table-driven
        collaborators.
    RecordingAlertSink: Collects operator alerts.
    CoexistenceHarness: Every component wired to in-memory stores.

Note:
    This module is intended for test code only. It should not be imported
    in production code paths.
"""

from tandem.testing.harness import NO_DELAY_RETRY, CoexistenceHarness, fast_config
from tandem.testing.platform import MUTATING_OPERATIONS, PlatformCall, RecordingPlatform
from tandem.testing.providers import (
    RecordingAlertSink,
    StaticEligibilityProvider,
    StaticIdentityResolver,
)

__all__ = [
    "CoexistenceHarness",
    "fast_config",
    "NO_DELAY_RETRY",
    "RecordingPlatform",
    "PlatformCall",
    "MUTATING_OPERATIONS",
    "StaticEligibilityProvider",
    "StaticIdentityResolver",
    "RecordingAlertSink",
]
