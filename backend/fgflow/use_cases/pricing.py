"""Pricing Resolver: live product prices and the append-only price history."""
from __future__ import annotations

import logging
import math
from typing import Any, Optional

from ..config import settings
from ..domain_errors import InvalidPrice, NotFound
from ..ledger import LedgerStore, ledger_key
from ..schemas import Actor, PriceUpdateIn
from ..time_utils import coerce_ms
from .workflow_hooks import DEFAULT_HOOKS, WorkflowHooks

logger = logging.getLogger(__name__)

PRICING_PATH = "productPricing"
PRICE_HISTORY_PATH = "productPriceHistory"
CATALOG_PATH = "productionProducts"


def _pricing_path(product_key: str) -> str:
    return f"{PRICING_PATH}/{ledger_key(product_key)}"


def _with_key(key: str, record: dict[str, Any]) -> dict[str, Any]:
    return {"pricingKey": key, **record}


def _catalog_id_for_name(ledger: LedgerStore, product_name: str) -> str | None:
    for product_id, product in ledger.children(CATALOG_PATH).items():
        if isinstance(product, dict) and product.get("name") == product_name:
            return product_id
    return None


def resolve_pricing(ledger: LedgerStore, product_key: str) -> Optional[dict[str, Any]]:
    """
    Find the live pricing record for a product id or name.

    Lookup order: exact record key, then the id of a catalog product with that
    name, then a pricing record whose ``productName`` matches. Returns None when
    nothing matches; never writes.
    """
    key = ledger_key(product_key)
    record = ledger.get(f"{PRICING_PATH}/{key}")
    if record:
        return _with_key(key, record)

    catalog_id = _catalog_id_for_name(ledger, product_key)
    if catalog_id:
        record = ledger.get(f"{PRICING_PATH}/{catalog_id}")
        if record:
            return _with_key(catalog_id, record)

    for pricing_key, candidate in ledger.children(PRICING_PATH).items():
        if isinstance(candidate, dict) and candidate.get("productName") == product_key:
            return _with_key(pricing_key, candidate)
    return None


def _history_entry(
    *,
    product_id: str,
    previous_price: float,
    new_price: float,
    change_reason: str,
    effective_date: int,
    actor: Actor,
    now: int,
) -> dict[str, Any]:
    return {
        "productId": product_id,
        "previousPrice": previous_price,
        "newPrice": new_price,
        "changeReason": change_reason,
        "effectiveDate": effective_date,
        "changedBy": actor.id,
        "changedByName": actor.name,
        "timestamp": now,
        "recordedBy": actor.id,
        "recordedByName": actor.name,
    }


def bootstrap_default_pricing(
    ledger: LedgerStore,
    *,
    product_key: str,
    default_price: float,
    actor: Actor,
    hooks: WorkflowHooks = DEFAULT_HOOKS,
) -> dict[str, Any]:
    """
    Create a pricing record at ``default_price`` plus an opening history entry.

    Not idempotent: a second call overwrites the live record and appends another
    history entry. Callers run ``resolve_pricing`` first.
    """
    now = hooks.now_ms()
    product_id = _catalog_id_for_name(ledger, product_key) or product_key
    record = {
        "productId": product_id,
        "productName": product_key,
        "currentPrice": default_price,
        "currency": settings.DEFAULT_CURRENCY,
        "priceType": settings.DEFAULT_PRICE_TYPE,
        "effectiveDate": now,
        "changeReason": "Default pricing set for dispatch",
        "createdAt": now,
        "createdBy": actor.id,
        "lastUpdatedBy": actor.id,
        "lastUpdatedByName": actor.name,
        "lastUpdatedAt": now,
        "status": "active",
    }
    ledger.set(_pricing_path(product_id), record)
    ledger.push(
        PRICE_HISTORY_PATH,
        _history_entry(
            product_id=product_id,
            previous_price=0,
            new_price=default_price,
            change_reason="Initial pricing set",
            effective_date=now,
            actor=actor,
            now=now,
        ),
    )
    logger.info(f"Bootstrapped default price {default_price} for {product_key}")
    return _with_key(ledger_key(product_id), record)


def resolve_or_bootstrap_pricing(
    ledger: LedgerStore,
    *,
    product_name: str,
    product_id: Optional[str] = None,
    default_price: float,
    actor: Actor,
    hooks: WorkflowHooks = DEFAULT_HOOKS,
) -> dict[str, Any]:
    """
    Pricing for a dispatch line: the record found by id, then by name, else a
    fresh default.

    Bootstrapped records are keyed by name (or its catalog id), so a product id
    the catalog does not know is only ever resolved through the name.
    """
    pricing = resolve_pricing(ledger, product_id or product_name)
    if pricing is None and product_id and product_id != product_name:
        pricing = resolve_pricing(ledger, product_name)
    if pricing is None:
        pricing = bootstrap_default_pricing(
            ledger,
            product_key=product_name,
            default_price=default_price,
            actor=actor,
            hooks=hooks,
        )
    return pricing


def _validated_price(price: Any) -> float:
    if isinstance(price, bool) or not isinstance(price, (int, float)):
        raise InvalidPrice()
    if math.isnan(price) or math.isinf(price) or price <= 0:
        raise InvalidPrice()
    return float(price)


def update_price_use_case(
    *,
    ledger: LedgerStore,
    product_key: str,
    data: PriceUpdateIn,
    actor: Actor,
    hooks: WorkflowHooks = DEFAULT_HOOKS,
) -> dict[str, Any]:
    """Set a product's live price, snapshotting the previous one when it changes."""
    new_price = _validated_price(data.price)
    now = hooks.now_ms()
    effective_date = coerce_ms(data.effective_date) or now
    change_reason = data.change_reason or "Price update"

    path = _pricing_path(product_key)
    current = ledger.get(path)

    if current and current.get("currentPrice") != new_price:
        ledger.push(
            PRICE_HISTORY_PATH,
            _history_entry(
                product_id=product_key,
                previous_price=current.get("currentPrice"),
                new_price=new_price,
                change_reason=change_reason,
                effective_date=effective_date,
                actor=actor,
                now=now,
            ),
        )

    record: dict[str, Any] = {
        "productId": product_key,
        "currentPrice": new_price,
        "currency": data.currency or (current or {}).get("currency") or settings.DEFAULT_CURRENCY,
        "priceType": data.price_type or (current or {}).get("priceType") or settings.DEFAULT_PRICE_TYPE,
        "effectiveDate": effective_date,
        "changeReason": change_reason,
        "lastUpdatedBy": actor.id,
        "lastUpdatedByName": actor.name,
        "lastUpdatedAt": now,
        "status": "active",
    }
    if current:
        for preserved in ("productName", "createdAt", "createdBy"):
            if preserved in current:
                record[preserved] = current[preserved]
    else:
        record["createdAt"] = now
        record["createdBy"] = actor.id

    ledger.set(path, record)
    logger.info(f"Price for {product_key} set to {new_price} by {actor.id}")
    return _with_key(ledger_key(product_key), record)


def price_change_percent(previous: Optional[float], new: Optional[float]) -> float:
    if not previous:
        return 0
    return ((new or 0) - previous) / previous * 100


def list_price_history_use_case(
    *,
    ledger: LedgerStore,
    product_id: Optional[str] = None,
    date_from: Optional[int] = None,
    date_to: Optional[int] = None,
) -> list[dict[str, Any]]:
    entries = [{"id": entry_id, **entry} for entry_id, entry in ledger.children(PRICE_HISTORY_PATH).items()]
    if product_id:
        entries = [entry for entry in entries if entry.get("productId") == product_id]
    if date_from is not None:
        entries = [entry for entry in entries if (entry.get("timestamp") or 0) >= date_from]
    if date_to is not None:
        entries = [entry for entry in entries if (entry.get("timestamp") or 0) <= date_to]
    return sorted(entries, key=lambda entry: entry.get("timestamp") or 0, reverse=True)


def pricing_analytics_use_case(*, ledger: LedgerStore, product_id: str) -> dict[str, Any]:
    history = list_price_history_use_case(ledger=ledger, product_id=product_id)
    prices = [entry.get("newPrice") or entry.get("previousPrice") for entry in history]
    prices = [price for price in prices if price]
    if not prices:
        raise NotFound(f"No price history for {product_id}", code="PRICE_HISTORY_NOT_FOUND")

    min_price = min(prices)
    max_price = max(prices)
    avg_price = sum(prices) / len(prices)
    return {
        "productId": product_id,
        "minPrice": min_price,
        "maxPrice": max_price,
        "avgPrice": avg_price,
        "totalChanges": len(history),
        "recentChanges": history[:5],
        "priceVolatility": (max_price - min_price) / avg_price * 100,
    }
