"""
Copyright (c) 2025 Amit Kadam

All Rights Reserved. No part of this software may be copied, reproduced, distributed, or used in derivative works without the prior written permission of the copyright holder.

For permission requests, contact: amitkadam96k@gmail.com
"""

from collections import namedtuple
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from errors import InvalidAmount, InvalidDistribution, ValidationError


CENT = Decimal("0.01")
ZERO = Decimal("0.00")
HUNDRED = Decimal("100")
PERCENT_TOLERANCE = Decimal("0.01")

QUARTERS = ("Q1", "Q2", "Q3", "Q4")
QUARTER_KEYS = ("q1", "q2", "q3", "q4")

Quarters = namedtuple("Quarters", QUARTER_KEYS)


# ---------- MONEY ----------

def round2(value):
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def to_money(value, field="amount"):
    if value is None or value == "":
        return ZERO
    if isinstance(value, bool):
        raise InvalidAmount(f"{field} must be a number", field)
    try:
        # str() first so floats like 0.1 keep their written value
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise InvalidAmount(f"{field} must be a number", field)
    if not amount.is_finite():
        raise InvalidAmount(f"{field} must be a number", field)
    try:
        return round2(amount)
    except InvalidOperation:
        raise InvalidAmount(f"{field} is too large", field)


def as_number(value):
    """Decimal -> float for JSON bodies and REAL columns."""
    return float(value)


# ---------- FEE COMPONENTS ----------

def fee_components(tuition=None, annual=None, services=None):
    tuition = to_money(tuition, "tuition_fee")
    annual = to_money(annual, "annual_fee")
    if tuition < 0 or annual < 0:
        raise InvalidAmount("Fee amounts cannot be negative")

    services = services or []
    if not isinstance(services, list):
        raise ValidationError("services must be a list", "services")

    services_total = ZERO
    named = {}
    for service in services:
        if not isinstance(service, dict):
            raise ValidationError("Each service must be an object", "services")
        amount = to_money(service.get("amount"), "services.amount")
        if amount < 0:
            raise InvalidAmount("Service amounts cannot be negative", "services.amount")
        services_total += amount
        name = (service.get("name") or "").strip()
        if name and amount:
            named[name] = amount

    return {
        "tuition": tuition,
        "annual": annual,
        "services": named or None,
        "total": tuition + annual + services_total,
    }


# ---------- QUARTER DISTRIBUTION ----------

def distribute_quarters(total, distribution_type="equal", custom=None):
    total = to_money(total, "total_amount")
    if total <= 0:
        raise InvalidAmount("total_amount is required and must be greater than 0", "total_amount")

    if distribution_type == "equal":
        share = round2(total / 4)
        parts = [share, share, share]
    elif distribution_type == "custom" and custom:
        if not isinstance(custom, dict):
            raise InvalidDistribution(
                "custom_distribution must be an object of q1_percent..q4_percent",
                "custom_distribution",
            )
        percents = []
        for key in QUARTER_KEYS:
            raw = custom.get(f"{key}_percent") or 0
            try:
                percent = Decimal(str(raw))
            except (InvalidOperation, ValueError):
                raise InvalidDistribution(f"{key}_percent must be a number", "custom_distribution")
            if isinstance(raw, bool) or not percent.is_finite():
                raise InvalidDistribution(f"{key}_percent must be a number", "custom_distribution")
            percents.append(percent)
        if any(p < 0 for p in percents):
            raise InvalidDistribution("Percentages cannot be negative", "custom_distribution")
        if abs(sum(percents) - HUNDRED) >= PERCENT_TOLERANCE:
            raise InvalidDistribution(
                "Custom distribution percentages must sum to 100", "custom_distribution"
            )
        parts = [round2(total * p / HUNDRED) for p in percents[:3]]
    else:
        raise InvalidDistribution(
            "Invalid distribution_type or missing custom_distribution", "distribution_type"
        )

    # Q4 takes whatever rounding left over
    quarters = Quarters(*parts, total - sum(parts))
    if sum(quarters) != total:
        raise InvalidDistribution("Quarterly amounts do not add up to the total", "total_amount")
    if quarters.q4 < 0:
        raise InvalidAmount(
            f"total_amount {total} is too small to split into four installments", "total_amount"
        )
    return quarters


def check_quarters(total, quarters, field="quarters"):
    if sum(quarters) != total:
        raise ValidationError(
            f"Quarterly amounts ({sum(quarters)}) must add up to the total ({total})", field
        )
    if any(q < 0 for q in quarters):
        raise InvalidAmount("Quarterly amounts cannot be negative", field)
    return Quarters(*quarters)


def quarters_from_payload(payload, total, field="quarters"):
    """Explicit q1..q4 when all four are given, otherwise derived from total."""
    given = [payload.get(key) for key in QUARTER_KEYS]
    present = [v is not None and v != "" for v in given]

    if all(present):
        return check_quarters(total, [to_money(v, k) for v, k in zip(given, QUARTER_KEYS)], field)
    if any(present):
        raise ValidationError("Provide all four quarterly amounts or none", field)
    if total == 0:
        return Quarters(ZERO, ZERO, ZERO, ZERO)
    return distribute_quarters(
        total,
        payload.get("distribution_type") or "equal",
        payload.get("custom_distribution"),
    )
