"""
Promo codes - validation and admin management
"""
from datetime import datetime, timezone

from pricing import parse_timestamp

DISCOUNT_TYPES = ("percent", "fixed")

EDITABLE_FIELDS = ("discount_type", "discount_value", "active", "valid_from", "valid_until", "usage_limit")


class PromoCodeError(Exception):
    def __init__(self, message, code="invalid_promo_code"):
        super().__init__(message)
        self.code = code


def normalize_code(code) -> str:
    return (code or "").strip().upper()


def validate_promo(promo: dict | None, now: datetime | None = None) -> dict:
    """Raise PromoCodeError unless the code can be applied right now"""
    if not promo:
        raise PromoCodeError("Invalid promo code", "not_found")
    if not promo.get("active"):
        raise PromoCodeError("Promo code is not active", "inactive")

    now = now or datetime.now(timezone.utc)
    valid_from = parse_timestamp(promo.get("valid_from"))
    valid_until = parse_timestamp(promo.get("valid_until"))

    if valid_from and now < valid_from:
        raise PromoCodeError("Promo code is not active yet", "not_yet_active")
    if valid_until and now > valid_until:
        raise PromoCodeError("Promo code has expired", "expired")

    limit = promo.get("usage_limit")
    if limit and (promo.get("usage_count") or 0) >= limit:
        raise PromoCodeError("Promo code usage limit reached", "usage_limit_reached")
    return promo


def check_promo_fields(data: dict):
    discount_type = data.get("discount_type")
    value = data.get("discount_value")
    if discount_type not in DISCOUNT_TYPES:
        raise PromoCodeError(f"discount_type must be one of {', '.join(DISCOUNT_TYPES)}", "invalid_discount")
    if value is None or value <= 0:
        raise PromoCodeError("discount_value must be positive", "invalid_discount")
    if discount_type == "percent" and value > 100:
        raise PromoCodeError("Percent discount can not exceed 100", "invalid_discount")


class PromoService:
    def __init__(self, db):
        self.db = db

    async def get(self, code):
        return await self.db.select_one("promo_codes", [("code", "eq", normalize_code(code))])

    async def validate(self, code) -> dict:
        code = normalize_code(code)
        if not code:
            raise PromoCodeError("Promo code required", "not_found")
        return validate_promo(await self.get(code))

    async def list(self):
        return await self.db.select("promo_codes", order="created_at.desc")

    async def create(self, data: dict) -> dict:
        code = normalize_code(data.get("code"))
        if not code:
            raise PromoCodeError("Promo code required", "invalid_code")
        check_promo_fields(data)

        row = {
            "code": code,
            "discount_type": data["discount_type"],
            "discount_value": data["discount_value"],
            "active": data.get("active", True),
            "valid_from": data.get("valid_from"),
            "valid_until": data.get("valid_until"),
            "usage_limit": data.get("usage_limit"),
            "usage_count": 0,
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        return await self.db.insert("promo_codes", row)

    async def update(self, code, data: dict) -> dict:
        existing = await self.get(code)
        if not existing:
            raise PromoCodeError("Promo code not found", "not_found")

        changes = {k: v for k, v in data.items() if k in EDITABLE_FIELDS}
        check_promo_fields({**existing, **changes})
        rows = await self.db.update("promo_codes", [("code", "eq", existing["code"])], changes)
        return rows[0] if rows else {**existing, **changes}

    async def delete(self, code):
        await self.db.delete("promo_codes", [("code", "eq", normalize_code(code))])

    async def redeem(self, code):
        promo = await self.get(code)
        if not promo:
            return
        count = (promo.get("usage_count") or 0) + 1
        await self.db.update("promo_codes", [("code", "eq", promo["code"])], {"usage_count": count})
