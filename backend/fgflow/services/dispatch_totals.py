"""Dispatch line and aggregate arithmetic."""
from __future__ import annotations

from typing import Any, Iterable


def line_total(quantity: int, unit_price: float) -> float:
    return quantity * unit_price


def dispatch_totals(lines: Iterable[dict[str, Any]]) -> dict[str, Any]:
    """Aggregates stored on a dispatch record; computed once, at creation."""
    lines = list(lines)
    return {
        "totalItems": len(lines),
        "totalQuantity": sum(int(line.get("quantity") or 0) for line in lines),
        "totalValue": sum(line_total(int(line.get("quantity") or 0), float(line.get("unitPrice") or 0)) for line in lines),
    }
