"""Prometheus metrics for the operations service."""

from __future__ import annotations

from typing import Final

from prometheus_client import Counter


WORKORDER_CREATED_TOTAL: Final = Counter(
    "portal_workorder_created_total",
    "Number of work orders created.",
)

WORKORDER_COMPLETED_TOTAL: Final = Counter(
    "portal_workorder_completed_total",
    "Number of work orders moved to Completed.",
    labelnames=("trigger",),
)

DELIVERY_AUTO_CREATED_TOTAL: Final = Counter(
    "portal_delivery_auto_created_total",
    "Number of deliveries spawned by completed work orders.",
)

STOCK_ADJUSTMENTS_TOTAL: Final = Counter(
    "portal_stock_adjustments_total",
    "Number of product stock adjustments applied.",
    labelnames=("direction",),
)

STOCK_REJECTIONS_TOTAL: Final = Counter(
    "portal_stock_rejections_total",
    "Number of stock debits rejected for insufficient stock.",
)

WORKORDER_FAILURES_TOTAL: Final = Counter(
    "portal_workorder_failures_total",
    "Number of work order operations rolled back.",
    labelnames=("operation", "kind"),
)

LOGINS_TOTAL: Final = Counter(
    "portal_logins_total",
    "Number of login attempts.",
    labelnames=("outcome",),
)


def direction_for(delta: int) -> str:
    if delta > 0:
        return "restock"
    if delta < 0:
        return "debit"
    return "noop"
