"""
Shared pytest fixtures for causeway tests.

This module provides:
- Isolation of structlog context and the settings cache between tests
- Sample event and workflow definitions used across the suite

Usage:
    Fixtures are auto-discovered by pytest; request them by name.

    def test_round_trip(order_placed, fulfil_order):
        ...
"""

from __future__ import annotations

from typing import Any

from typing_extensions import TypedDict

import pytest
import structlog

from causeway.core.logging import clear_context
from causeway.core.settings import CausewaySettings, clear_settings_cache
from causeway.events import define_event
from causeway.workflows import define_workflow


class OrderData(TypedDict):
    orderId: str


class ShipmentData(TypedDict):
    orderId: str
    carrier: str


ORDER_PLACED = define_event("order.placed", data=OrderData, result=dict[str, str])
ORDER_SHIPPED = define_event("order.shipped", data=ShipmentData)
FULFIL_ORDER = define_workflow("order.fulfil", data=OrderData, result=dict[str, Any]).steps(
    lambda s: s.sequential("validate", "charge", "notify")
)


# ---------------------------------------------------------------------------
# Isolation
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _isolate_state():
    """Clear structlog contextvars and cached settings around every test."""
    clear_context()
    clear_settings_cache()
    yield
    clear_context()
    clear_settings_cache()


@pytest.fixture
def reset_structlog():
    """Restore structlog defaults after a test that calls configure_logging."""
    yield
    structlog.reset_defaults()


# ---------------------------------------------------------------------------
# Definitions
# ---------------------------------------------------------------------------


@pytest.fixture
def order_placed():
    return ORDER_PLACED


@pytest.fixture
def order_shipped():
    return ORDER_SHIPPED


@pytest.fixture
def fulfil_order():
    return FULFIL_ORDER


@pytest.fixture
def settings():
    """Settings built from defaults only, ignoring the environment file."""
    return CausewaySettings(_env_file=None)
