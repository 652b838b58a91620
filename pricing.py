"""
Pricing module - sale prices, shipping and the checkout total
"""
import math
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP

from config import (
    DELIVERY_METHODS,
    DEFAULT_DELIVERY_METHOD,
    DEFAULT_PRODUCT_WEIGHT,
    FREE_SHIPPING_THRESHOLD,
    SAMPLES_MIN_ORDER,
)


class PricingError(Exception):
    def __init__(self, message, code="pricing_error"):
        super().__init__(message)
        self.code = code


def round_rub(value) -> int:
    """Round to whole roubles, halves away from zero"""
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def parse_timestamp(value) -> datetime | None:
    if not value:
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def is_sale_active(product: dict, now: datetime | None = None) -> bool:
    if not product.get("sale_enabled") or not product.get("sale_discount"):
        return False
    end = parse_timestamp(product.get("sale_end_date"))
    if end is None:
        return False
    now = now or datetime.now(timezone.utc)
    return end > now


def effective_price(product: dict, now: datetime | None = None) -> int:
    """
    Price the customer pays for one unit

    A running sale takes `sale_discount` percent off the list price.
    """
    price = product.get("price") or 0
    if is_sale_active(product, now):
        discount = Decimal(str(product["sale_discount"]))
        return round_rub(Decimal(str(price)) * (1 - discount / 100))
    return round_rub(price)


def total_weight(lines) -> Decimal:
    """Parcel weight in kg, products without a weight count as 0.1 kg"""
    weight = Decimal("0")
    for line in lines:
        unit = Decimal(str(line.weight)) if line.weight else Decimal(DEFAULT_PRODUCT_WEIGHT)
        weight += unit * line.quantity
    return weight


def resolve_delivery_method(store: str, method: str | None) -> str:
    method = method or DEFAULT_DELIVERY_METHOD.get(store)
    if method not in DELIVERY_METHODS:
        raise PricingError(f"Unknown delivery method: {method}", "invalid_delivery_method")
    stores, _, _ = DELIVERY_METHODS[method]
    if store not in stores:
        raise PricingError(f"Delivery method {method} is not available for {store}", "invalid_delivery_method")
    return method


def shipping_cost(store: str, method: str, subtotal_without_samples: int, weight: Decimal) -> int:
    method = resolve_delivery_method(store, method)

    # Samples do not count toward free shipping
    if subtotal_without_samples >= FREE_SHIPPING_THRESHOLD:
        return 0

    _, flat, per_kg = DELIVERY_METHODS[method]
    if per_kg:
        return math.ceil(weight) * per_kg
    return flat


def promo_discount(promo: dict | None, amount: int) -> int:
    """Discount of a validated promo code on the amount left after points"""
    if not promo or amount <= 0:
        return 0
    value = promo.get("discount_value") or 0
    if promo.get("discount_type") == "percent":
        return min(round_rub(Decimal(str(amount)) * Decimal(str(value)) / 100), amount)
    return min(round_rub(value), amount)


def check_samples_minimum(cart):
    if cart.store == "china" and cart.sample_lines and cart.subtotal_without_samples < SAMPLES_MIN_ORDER:
        raise PricingError(
            f"Orders with a sample need at least {SAMPLES_MIN_ORDER} RUB of other products",
            "samples_min_order",
        )


def calculate_checkout(cart, delivery_method: str | None = None, loyalty_points: int = 0, promo: dict | None = None) -> dict:
    """
    Price a store cart

    Points go first, on products only (samples excluded). The promo code
    then applies to what is left. Shipping is added on top.

    Returns:
        {
            "subtotal": 10500,
            "subtotal_without_samples": 10000,
            "samples_total": 500,
            "total_weight": "1.2",
            "delivery_method": "russian_post",
            "shipping_cost": 0,
            "loyalty_discount": 5000,
            "promo_code": "SPRING10",
            "promo_discount": 500,
            "total": 5000,
        }
    """
    if cart.is_empty:
        raise PricingError("Cart is empty", "empty_cart")

    method = resolve_delivery_method(cart.store, delivery_method)
    subtotal = cart.subtotal
    eligible = cart.subtotal_without_samples
    weight = total_weight(cart.lines)

    shipping = shipping_cost(cart.store, method, eligible, weight)

    loyalty_discount = min(max(int(loyalty_points or 0), 0), eligible)
    after_loyalty = eligible - loyalty_discount
    promo_off = promo_discount(promo, after_loyalty)

    total = max(0, subtotal - loyalty_discount - promo_off + shipping)

    return {
        "subtotal": subtotal,
        "subtotal_without_samples": eligible,
        "samples_total": cart.samples_total,
        "total_weight": str(weight),
        "delivery_method": method,
        "shipping_cost": shipping,
        "loyalty_discount": loyalty_discount,
        "promo_code": promo.get("code") if promo else None,
        "promo_discount": promo_off,
        "total": total,
    }
