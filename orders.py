"""
Orders - numbering, placement and status lifecycle
"""
import asyncio
import uuid
from datetime import datetime, timezone, timedelta
from zoneinfo import ZoneInfo

from config import (
    STORE_TIMEZONE,
    PAYMENT_METHODS,
    ORDER_NUMBER_MAX_ATTEMPTS,
    ORDER_NUMBER_RETRY_DELAY,
)
from cart import Cart
from pricing import calculate_checkout, check_samples_minimum
from promo import PromoService
from loyalty import LoyaltyService, calculate_cashback
from supabase_client import SupabaseError

ORDER_STATUSES = ("pending", "processing", "shipped", "delivered", "cancelled")


class OrderError(Exception):
    def __init__(self, message, code="order_error"):
        super().__init__(message)
        self.code = code


class OrderNotFound(OrderError):
    def __init__(self, order_id):
        super().__init__(f"Order not found: {order_id}", "not_found")


class OrderNumberConflict(OrderError):
    def __init__(self, attempts):
        super().__init__(f"Could not allocate an order number after {attempts} attempts", "order_number_conflict")


# ================================================================
# Order numbers: DDMM + daily sequence
# ================================================================

def local_now(now: datetime | None = None) -> datetime:
    now = now or datetime.now(timezone.utc)
    return now.astimezone(ZoneInfo(STORE_TIMEZONE))


def date_prefix(now: datetime | None = None) -> str:
    return local_now(now).strftime("%d%m")


def day_bounds(now: datetime | None = None):
    """Start and end of the local day, in UTC"""
    local = local_now(now)
    start = local.replace(hour=0, minute=0, second=0, microsecond=0)
    end = start + timedelta(days=1) - timedelta(microseconds=1)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def next_sequence(order_numbers, prefix: str) -> int:
    sequences = []
    for number in order_numbers:
        if number and number.startswith(prefix) and number[len(prefix):].isdigit():
            sequences.append(int(number[len(prefix):]))
    return max(sequences) + 1 if sequences else 1


def format_order_number(prefix: str, sequence: int) -> str:
    return f"{prefix}{sequence:02d}"


class OrderService:
    def __init__(self, db, notifier=None):
        self.db = db
        self.notifier = notifier
        self.loyalty = LoyaltyService(db)
        self.promos = PromoService(db)

    # === Numbering ===

    async def next_order_number(self, now: datetime | None = None) -> str:
        prefix = date_prefix(now)
        start, end = day_bounds(now)
        rows = await self.db.select(
            "orders",
            [
                ("created_at", "gte", start.isoformat()),
                ("created_at", "lte", end.isoformat()),
                ("order_number", "like", f"{prefix}%"),
            ],
            columns="order_number",
            order="order_number.desc",
        )
        return format_order_number(prefix, next_sequence([r.get("order_number") for r in rows], prefix))

    async def insert_with_number(self, order: dict) -> dict:
        """Insert the order under the next free number, retrying on conflicts"""
        for attempt in range(1, ORDER_NUMBER_MAX_ATTEMPTS + 1):
            order["order_number"] = await self.next_order_number()
            try:
                return await self.db.insert("orders", order)
            except SupabaseError as e:
                if not e.is_unique_violation:
                    raise
                print(f"[Orders] ⚠️ Order number {order['order_number']} taken, retry {attempt}/{ORDER_NUMBER_MAX_ATTEMPTS}")
                await asyncio.sleep(ORDER_NUMBER_RETRY_DELAY)
        raise OrderNumberConflict(ORDER_NUMBER_MAX_ATTEMPTS)

    # === Checkout ===

    async def build_cart(self, store: str, items) -> Cart:
        cart = Cart(store)
        if not items:
            return cart

        ids = [str(item["product_id"]) for item in items]
        products = await self.db.select("products", [("id", "in", ids)])
        by_id = {str(p["id"]): p for p in products}

        for item in items:
            product = by_id.get(str(item["product_id"]))
            if product is None:
                raise OrderError(f"Product not found: {item['product_id']}", "product_not_found")
            if product.get("in_stock") is False:
                raise OrderError(f"Product is out of stock: {product.get('name') or product['id']}", "out_of_stock")
            cart.add(product, int(item.get("quantity", 1)))
        return cart

    async def quote(self, user_id, request: dict) -> dict:
        """Price a checkout without saving anything"""
        cart = await self.build_cart(request["store"], request.get("items"))
        check_samples_minimum(cart)

        promo = None
        if request.get("promo_code"):
            promo = await self.promos.validate(request["promo_code"])

        requested = int(request.get("loyalty_points") or 0)
        available = await self.loyalty.balance(user_id) if user_id else 0

        pricing = calculate_checkout(
            cart,
            delivery_method=request.get("delivery_method"),
            loyalty_points=min(requested, available),
            promo=promo,
        )
        return {"cart": cart, "pricing": pricing, "available_points": available}

    async def place_order(self, user: dict, request: dict) -> dict:
        payment_method = request.get("payment_method") or "card"
        if payment_method not in PAYMENT_METHODS:
            raise OrderError(f"Unknown payment method: {payment_method}", "invalid_payment_method")

        quote = await self.quote(user["id"], request)
        cart, pricing = quote["cart"], quote["pricing"]
        shipping_info = dict(request.get("shipping_info") or {})
        shipping_info["delivery_method"] = pricing["delivery_method"]

        order = {
            "id": str(uuid.uuid4()),
            "user_id": user["id"],
            "email": shipping_info.get("email") or user.get("email"),
            "full_name": shipping_info.get("full_name", ""),
            "phone": shipping_info.get("phone", ""),
            "store": cart.store,
            "items": [line.to_dict() for line in cart.lines],
            "shipping_info": shipping_info,
            "payment_method": payment_method,
            "subtotal": pricing["subtotal"],
            "subtotal_without_samples": pricing["subtotal_without_samples"],
            "shipping_cost": pricing["shipping_cost"],
            "promo_code": pricing["promo_code"],
            "promo_discount": pricing["promo_discount"] or None,
            "loyalty_points_used": pricing["loyalty_discount"] or None,
            "total": pricing["total"],
            "status": "pending",
            "language": request.get("language") or "ru",
            "created_at": datetime.now(timezone.utc).isoformat(),
        }

        order = await self.insert_with_number(order)
        print(f"[Orders] ✅ Order #{order['order_number']} created: {order['total']} RUB ({cart.store})")

        # The order is saved from here on, so bookkeeping failures are only logged
        # Cashback is earned on delivery, only spent points move now
        if pricing["loyalty_discount"] > 0:
            try:
                await self.loyalty.spend(
                    user["id"], pricing["loyalty_discount"],
                    f"Использовано при заказе #{order['order_number']}", order["id"],
                )
                await self._push(order, "loyalty_spent", points=pricing["loyalty_discount"])
            except Exception as e:
                print(f"[Orders] ❌ points not deducted for #{order['order_number']}: {e}")
        if pricing["promo_code"]:
            try:
                await self.promos.redeem(pricing["promo_code"])
            except Exception as e:
                print(f"[Orders] ❌ promo {pricing['promo_code']} not counted for #{order['order_number']}: {e}")

        await self._notify(order, "new", "order_pending")
        return order

    # === Lifecycle ===

    async def get(self, order_id) -> dict:
        order = await self.db.select_one("orders", [("id", "eq", order_id)])
        if not order:
            raise OrderNotFound(order_id)
        return order

    async def list_for_user(self, user_id):
        return await self.db.select("orders", [("user_id", "eq", user_id)], order="created_at.desc")

    async def list_all(self, status=None, store=None):
        filters = []
        if status:
            filters.append(("status", "eq", status))
        if store:
            filters.append(("store", "eq", store))
        return await self.db.select("orders", filters, order="created_at.desc")

    async def _save(self, order_id, changes) -> dict:
        rows = await self.db.update("orders", [("id", "eq", order_id)], changes)
        return rows[0] if rows else None

    async def update_status(self, order_id, status: str) -> dict:
        if status not in ORDER_STATUSES:
            raise OrderError(f"Unknown order status: {status}", "invalid_status")

        order = await self.get(order_id)
        old_status = order.get("status")
        changes = {"status": status}

        # Cashback is paid once per order, whatever the status history
        if status == "delivered" and not order.get("loyalty_points_earned"):
            earned = await self._award_cashback(order)
            if earned:
                changes["loyalty_points_earned"] = earned

        order = await self._save(order_id, changes) or {**order, **changes}
        print(f"[Orders] #{order.get('order_number')} {old_status} -> {status}")

        await self._notify(order, "status_update", f"order_{status}")
        if changes.get("loyalty_points_earned"):
            await self._push(order, "loyalty_earned", points=changes["loyalty_points_earned"])
        return order

    async def set_tracking(self, order_id, tracking_number: str) -> dict:
        if not tracking_number or not tracking_number.strip():
            raise OrderError("Tracking number required", "invalid_tracking")
        order = await self.get(order_id)
        changes = {"tracking_number": tracking_number.strip(), "status": "shipped"}
        order = await self._save(order_id, changes) or {**order, **changes}
        await self._notify(order, "tracking", "order_shipped")
        return order

    async def _award_cashback(self, order: dict) -> int:
        user_id = order.get("user_id")
        if not user_id:
            return 0
        # Not delivered yet, so the order is not part of the stored total
        previous = await self.loyalty.lifetime_total(user_id)
        amount = int(order.get("subtotal_without_samples") or 0)
        points = calculate_cashback(amount, previous + amount)
        if points > 0:
            await self.loyalty.earn(user_id, points, f"Начислено за заказ #{order.get('order_number')}", order["id"])
            print(f"[Loyalty] 🎁 {points} pts for #{order.get('order_number')} (lifetime before: {previous} RUB)")
        return points

    # === Notifications ===

    async def _notify(self, order, email_kind, push_kind):
        if self.notifier is None:
            return
        try:
            await self.notifier.send_order_email(order, email_kind)
        except Exception as e:
            print(f"[Orders] email error for #{order.get('order_number')}: {e}")
        await self._push(order, push_kind)

    async def _push(self, order, kind, points=None):
        if self.notifier is None:
            return
        try:
            await self.notifier.send_push(order.get("user_id"), kind, order=order, points=points)
        except Exception as e:
            print(f"[Orders] push error for #{order.get('order_number')}: {e}")
