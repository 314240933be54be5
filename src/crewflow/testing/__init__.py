"""
Test utilities for crewflow.

Components:
    MarketplaceHarness: In-memory marketplace with fakes and workflows wired
    EffectAssertions: Assertions over the effects a workflow returns
    Fakes: payment gateway, carrier, job queue, senders and a frozen clock

Note:
    This module is intended for test code only.
"""

from crewflow.testing.assertions import EffectAssertions
from crewflow.testing.fakes import (
    FakeCarrierProvider,
    FrozenClock,
    InMemoryPaymentGateway,
    RecordingEmailSender,
    RecordingJobQueue,
    RecordingNotificationSender,
)
from crewflow.testing.harness import MarketplaceHarness

__all__ = [
    "EffectAssertions",
    "FakeCarrierProvider",
    "FrozenClock",
    "InMemoryPaymentGateway",
    "MarketplaceHarness",
    "RecordingEmailSender",
    "RecordingJobQueue",
    "RecordingNotificationSender",
]
