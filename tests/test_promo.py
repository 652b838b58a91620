"""Tests for promo code validation and management."""

from datetime import datetime, timedelta, timezone

import pytest
from promo import PromoCodeError, PromoService, normalize_code, validate_promo

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def _promo(**extra):
    promo = {"code": "SPRING10", "discount_type": "percent", "discount_value": 10, "active": True, "usage_count": 0}
    promo.update(extra)
    return promo


class TestValidatePromo:
    def test_valid_code(self):
        assert validate_promo(_promo(), NOW)["code"] == "SPRING10"

    @pytest.mark.parametrize(
        "promo, reason",
        [
            (None, "not_found"),
            (_promo(active=False), "inactive"),
            (_promo(valid_from="2026-10-20T00:00:00Z"), "not_yet_active"),
            (_promo(valid_until="2026-10-18T23:59:59Z"), "expired"),
            (_promo(usage_limit=5, usage_count=5), "usage_limit_reached"),
        ],
    )
    def test_rejections(self, promo, reason):
        with pytest.raises(PromoCodeError) as exc:
            validate_promo(promo, NOW)
        assert exc.value.code == reason

    def test_inside_validity_window(self):
        promo = _promo(valid_from="2026-10-01T00:00:00Z", valid_until="2026-10-31T00:00:00Z")
        validate_promo(promo, NOW)

    def test_zero_limit_means_unlimited(self):
        validate_promo(_promo(usage_limit=0, usage_count=100), NOW)


def test_codes_are_upper_cased():
    assert normalize_code("  spring10 ") == "SPRING10"


class TestPromoService:
    @pytest.mark.asyncio
    async def test_create_and_validate_case_insensitive(self, db):
        service = PromoService(db)
        created = await service.create({"code": "welcome", "discount_type": "fixed", "discount_value": 500})
        assert created["code"] == "WELCOME"
        assert created["usage_count"] == 0
        promo = await service.validate("Welcome")
        assert promo["discount_value"] == 500

    @pytest.mark.asyncio
    async def test_percent_over_100_rejected(self, db):
        with pytest.raises(PromoCodeError):
            await PromoService(db).create({"code": "ALL", "discount_type": "percent", "discount_value": 150})

    @pytest.mark.asyncio
    async def test_unknown_discount_type_rejected(self, db):
        with pytest.raises(PromoCodeError):
            await PromoService(db).create({"code": "X", "discount_type": "bogo", "discount_value": 1})

    @pytest.mark.asyncio
    async def test_update_keeps_code(self, db):
        service = PromoService(db)
        await service.create({"code": "SUMMER", "discount_type": "percent", "discount_value": 5})
        updated = await service.update("summer", {"discount_value": 7, "code": "HACKED"})
        assert updated["code"] == "SUMMER"
        assert updated["discount_value"] == 7

    @pytest.mark.asyncio
    async def test_update_missing(self, db):
        with pytest.raises(PromoCodeError) as exc:
            await PromoService(db).update("NOPE", {"active": False})
        assert exc.value.code == "not_found"

    @pytest.mark.asyncio
    async def test_redeem_counts_usage_until_limit(self, db):
        service = PromoService(db)
        await service.create({"code": "ONCE", "discount_type": "fixed", "discount_value": 100, "usage_limit": 1})
        await service.redeem("ONCE")
        with pytest.raises(PromoCodeError) as exc:
            await service.validate("ONCE")
        assert exc.value.code == "usage_limit_reached"

    @pytest.mark.asyncio
    async def test_delete(self, db):
        service = PromoService(db)
        await service.create({"code": "GONE", "discount_type": "fixed", "discount_value": 100})
        await service.delete("gone")
        assert await service.get("GONE") is None

    @pytest.mark.asyncio
    async def test_expired_code_from_db(self, db):
        yesterday = (datetime.now(timezone.utc) - timedelta(days=1)).isoformat()
        db.seed("promo_codes", _promo(code="OLD", valid_until=yesterday))
        with pytest.raises(PromoCodeError) as exc:
            await PromoService(db).validate("old")
        assert exc.value.code == "expired"
