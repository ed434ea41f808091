"""
Test Doubles for BranchCore Tests
=================================
Deterministic gateways, failing stores and a controllable clock for
offline testing without model downloads or a real disk.

Usage:
    from tests.mocks import StaticGateway, BrokenStore, FakeClock
"""

from .mock_gateway import StaticGateway
from .mock_store import BrokenStore, FakeClock

__all__ = ["StaticGateway", "BrokenStore", "FakeClock"]
