"""
Loyalty program - tiers by lifetime spend and progressive cashback
"""
import math
import uuid
from datetime import datetime, timezone
from decimal import Decimal

from config import LOYALTY_TIERS, LOYALTY_HISTORY_LIMIT


def tier_for(lifetime_total: int) -> dict:
    """Tier reached with this lifetime total"""
    current = LOYALTY_TIERS[0]
    for tier in LOYALTY_TIERS:
        if lifetime_total >= tier[1]:
            current = tier
    name, threshold, rate = current
    return {"tier": name, "threshold": threshold, "rate": rate}


def tier_table() -> list:
    table = []
    for i, (name, threshold, rate) in enumerate(LOYALTY_TIERS):
        upper = LOYALTY_TIERS[i + 1][1] - 1 if i + 1 < len(LOYALTY_TIERS) else None
        table.append({"tier": name, "min_total": threshold, "max_total": upper, "rate": rate})
    return table


def _next_threshold(current_total):
    for _, threshold, _ in LOYALTY_TIERS:
        if threshold > current_total:
            return threshold
    return math.inf


def calculate_cashback(order_amount: int, lifetime_total: int) -> int:
    """
    Points earned for an order

    `lifetime_total` already includes the order. The order amount is split
    at tier thresholds and every slice earns the rate of its own tier.
    """
    if order_amount <= 0:
        return 0

    points = 0
    remaining = order_amount
    current = max(lifetime_total - order_amount, 0)

    while remaining > 0:
        rate = tier_for(current)["rate"]
        slice_amount = min(remaining, _next_threshold(current) - current)
        points += math.floor(Decimal(slice_amount) * Decimal(str(rate)))
        remaining -= slice_amount
        current += slice_amount

    return points


class LoyaltyService:
    def __init__(self, db):
        self.db = db

    async def balance(self, user_id) -> int:
        profile = await self.db.select_one("profiles", [("id", "eq", user_id)], columns="loyalty_points")
        return int((profile or {}).get("loyalty_points") or 0)

    async def lifetime_total(self, user_id) -> int:
        orders = await self.db.select(
            "orders",
            [("user_id", "eq", user_id), ("status", "eq", "delivered")],
            columns="subtotal,total",
        )
        return sum(int(o.get("subtotal") or o.get("total") or 0) for o in orders)

    async def history(self, user_id, limit=LOYALTY_HISTORY_LIMIT):
        return await self.db.select(
            "loyalty_transactions",
            [("user_id", "eq", user_id)],
            order="created_at.desc",
            limit=limit,
        )

    async def account(self, user_id) -> dict:
        points = await self.balance(user_id)
        lifetime = await self.lifetime_total(user_id)
        history = await self.history(user_id)
        tier = tier_for(lifetime)
        return {
            "points": points,
            "lifetime_total": lifetime,
            "tier": tier["tier"],
            "rate": tier["rate"],
            "total_earned": sum(h["points"] for h in history if h.get("type") == "earned"),
            "total_spent": sum(h["points"] for h in history if h.get("type") == "spent"),
            "history": history,
        }

    async def earn(self, user_id, points, description="", order_id=None) -> int:
        return await self._apply(user_id, points, "earned", description, order_id)

    async def spend(self, user_id, points, description="", order_id=None) -> int:
        return await self._apply(user_id, points, "spent", description, order_id)

    async def _apply(self, user_id, points, kind, description, order_id):
        points = int(points)
        if points <= 0:
            return await self.balance(user_id)

        current = await self.balance(user_id)
        new_balance = current + points if kind == "earned" else max(0, current - points)

        await self.db.update("profiles", [("id", "eq", user_id)], {"loyalty_points": new_balance})
        await self.db.insert("loyalty_transactions", {
            "id": str(uuid.uuid4()),
            "user_id": user_id,
            "order_id": order_id,
            "points": points,
            "type": kind,
            "description": description,
            "created_at": datetime.now(timezone.utc).isoformat(),
        })
        print(f"[Loyalty] {user_id}: {kind} {points} pts ({current} -> {new_balance})")
        return new_balance
