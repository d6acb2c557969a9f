"""Prometheus metrics for the store service."""

from __future__ import annotations

from typing import Final

from prometheus_client import Counter, Histogram

_RECOMMENDATION_OUTCOMES: Final = (
    "ok",
    "empty",
    "malformed",
    "upstream_error",
)

# Checkout -----------------------------------------------------------------------------------
STORE_ORDERS_PLACED_TOTAL: Final = Counter(
    "store_orders_placed_total",
    "Checkout attempts by outcome.",
    labelnames=("mode", "outcome"),
)

STORE_CHECKOUT_SECONDS: Final = Histogram(
    "store_checkout_seconds",
    "Time taken to persist an order, its lines and the stock decrements.",
    labelnames=("mode",),
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2, 5),
)

STORE_ORDER_LINES_OVERSOLD_TOTAL: Final = Counter(
    "store_order_lines_oversold_total",
    "Order lines whose decrement found less stock than requested.",
)

# Inventory ledger ---------------------------------------------------------------------------
STORE_STOCK_DECREMENT_RETRIES_TOTAL: Final = Counter(
    "store_stock_decrement_retries_total",
    "Compare-and-swap decrements retried after losing to a concurrent writer.",
)

STORE_STOCK_DECREMENT_FAILURES_TOTAL: Final = Counter(
    "store_stock_decrement_failures_total",
    "Stock decrements that could not be applied.",
    labelnames=("reason",),
)

# Status workflow ----------------------------------------------------------------------------
STORE_ORDER_STATUS_TRANSITIONS_TOTAL: Final = Counter(
    "store_order_status_transitions_total",
    "Accepted and rejected order status transitions.",
    labelnames=("to_status", "result"),
)

# Recommendations ----------------------------------------------------------------------------
STORE_RECOMMENDATION_REQUESTS_TOTAL: Final = Counter(
    "store_recommendation_requests_total",
    "Recommendation generation requests by role and outcome.",
    labelnames=("role", "outcome"),
)


def normalise_recommendation_outcome(raw: str) -> str:
    """Return a bounded label value for recommendation counters."""

    outcome = (raw or "malformed").strip().lower()
    return outcome if outcome in _RECOMMENDATION_OUTCOMES else "malformed"
