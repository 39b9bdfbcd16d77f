"""Bounded connection-test orchestration."""

from vendorvault.orchestrator.queue import ConnectionTestQueue, get_test_queue
from vendorvault.orchestrator.tester import ConnectionTester, get_tester

__all__ = ["ConnectionTestQueue", "ConnectionTester", "get_test_queue", "get_tester"]
