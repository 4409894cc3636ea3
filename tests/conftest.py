"""
Shared pytest fixtures and configuration for asynx tests.
"""

import asyncio

import pytest

from asynx.observable import _reset_notification_state


@pytest.fixture(autouse=True)
def reset_notification_state():
    """Reset the propagation and transaction state before each test to prevent leakage."""
    _reset_notification_state()


async def _settle(*instances):
    # Downstream instances only schedule once their upstream commits, so keep
    # going until every instance is quiet after a full loop iteration
    while True:
        for instance in instances:
            await instance.settled()
        await asyncio.sleep(0)
        if all(instance.is_settled for instance in instances):
            return


@pytest.fixture
def settle():
    """Coroutine function awaiting until every given instance has settled."""
    return _settle
