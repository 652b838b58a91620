"""
Asia Pharm storefront - backend API

Endpoints:
  GET  /api/health                  → health check
  GET  /api/loyalty/tiers           → cashback tiers
  GET  /api/products                → public catalog
  POST /api/cart/summary            → per-store cart totals
  POST /api/checkout/quote          → price a checkout (login required)
  POST /api/orders                  → place an order (login required)
  GET  /api/orders                  → my orders
  GET  /api/loyalty                 → my points, tier and history
  GET  /api/promo-codes/validate    → check a promo code
  /api/admin/...                    → products, catalog CSV/WooCommerce, orders, promo codes
"""
import traceback

from fastapi import FastAPI, HTTPException, Depends, Header, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from pydantic import BaseModel, Field

from config import ALLOWED_ORIGINS, STORES
from cart import CartError, MultiStoreCart
from catalog import CatalogError, CatalogService
from loyalty import LoyaltyService, tier_table
from notifications import Notifier
from orders import OrderError, OrderNotFound, OrderService
from pricing import PricingError
from promo import PromoCodeError, PromoService
from supabase_client import SupabaseClient, SupabaseError

app = FastAPI(title="Asia Pharm API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

db = SupabaseClient()
notifier = Notifier(db)

BUSINESS_ERRORS = (CartError, PricingError, PromoCodeError, OrderError, CatalogError)


# ================================================================
# Auth
# ================================================================

async def current_user(authorization: str = Header(default="")):
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(status_code=401, detail="Unauthorized")
    user = await db.get_user(token)
    if not user:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return user


async def require_admin(user: dict = Depends(current_user)):
    profile = await db.select_one("profiles", [("id", "eq", user["id"])], columns="is_admin")
    if not profile or not profile.get("is_admin"):
        raise HTTPException(status_code=403, detail="Admin access required")
    return user


# ================================================================
# Request / Response Models
# ================================================================

class CartItem(BaseModel):
    product_id: str
    quantity: int = Field(default=1, ge=1)


class CartSummaryRequest(BaseModel):
    items: list[CartItem]


class ShippingInfo(BaseModel):
    full_name: str = ""
    email: str = ""
    phone: str = ""
    region: str = ""
    city: str = ""
    address: str = ""
    postal_code: str = ""
    notes: str = ""


class CheckoutRequest(BaseModel):
    store: str
    items: list[CartItem]
    delivery_method: str | None = None
    payment_method: str = "card"
    promo_code: str | None = None
    loyalty_points: int = Field(default=0, ge=0)
    shipping_info: ShippingInfo = ShippingInfo()
    language: str = "ru"


class ApiResponse(BaseModel):
    success: bool
    error: str | None = None
    code: str | None = None


class QuoteResponse(ApiResponse):
    pricing: dict | None = None
    items: list | None = None
    available_points: int | None = None


class OrderResponse(ApiResponse):
    order: dict | None = None


class StatusUpdateRequest(BaseModel):
    status: str


class TrackingRequest(BaseModel):
    tracking_number: str


class PromoCodeRequest(BaseModel):
    code: str | None = None
    discount_type: str | None = None
    discount_value: float | None = None
    active: bool | None = None
    valid_from: str | None = None
    valid_until: str | None = None
    usage_limit: int | None = None


class WooCommerceImportRequest(BaseModel):
    url: str


def failure(model, e):
    return model(success=False, error=str(e), code=getattr(e, "code", None))


# ================================================================
# Public
# ================================================================

@app.get("/api/health")
async def health():
    return {"status": "ok", "service": "asia-pharm-api"}


@app.get("/api/loyalty/tiers")
async def loyalty_tiers():
    return {"tiers": tier_table()}


@app.get("/api/products")
async def list_products(store: str | None = None, category: str | None = None, disease: str | None = None):
    if store and store not in STORES:
        raise HTTPException(status_code=400, detail=f"Unknown store: {store}")
    products = await CatalogService(db).list_products(store=store, category=category, disease=disease)
    return {"products": products}


@app.post("/api/cart/summary")
async def cart_summary(req: CartSummaryRequest):
    """Totals of a client-side cart, grouped by store"""
    ids = [item.product_id for item in req.items]
    products = await db.select("products", [("id", "in", ids)]) if ids else []
    by_id = {str(p["id"]): p for p in products}

    carts = MultiStoreCart()
    errors = []
    for item in req.items:
        product = by_id.get(item.product_id)
        if product is None:
            errors.append(f"Product not found: {item.product_id}")
            continue
        try:
            carts.add(product, item.quantity)
        except CartError as e:
            errors.append(str(e))

    return {
        "stores": {store: carts.cart(store).to_dict() for store in STORES},
        "total_items": carts.total_items,
        "errors": errors,
    }


# ================================================================
# Customer
# ================================================================

@app.post("/api/checkout/quote", response_model=QuoteResponse)
async def checkout_quote(req: CheckoutRequest, user: dict = Depends(current_user)):
    try:
        quote = await OrderService(db).quote(user["id"], req.model_dump())
        return QuoteResponse(
            success=True,
            pricing=quote["pricing"],
            items=[line.to_dict() for line in quote["cart"].lines],
            available_points=quote["available_points"],
        )
    except BUSINESS_ERRORS as e:
        return failure(QuoteResponse, e)
    except SupabaseError as e:
        print(f"[API] quote error: {traceback.format_exc()}")
        return QuoteResponse(success=False, error=f"Failed to price checkout: {e.message}", code="database_error")


@app.post("/api/orders", response_model=OrderResponse)
async def place_order(req: CheckoutRequest, user: dict = Depends(current_user)):
    try:
        order = await OrderService(db, notifier).place_order(user, req.model_dump())
        return OrderResponse(success=True, order=order)
    except BUSINESS_ERRORS as e:
        return failure(OrderResponse, e)
    except SupabaseError as e:
        print(f"[API] place order error: {traceback.format_exc()}")
        return OrderResponse(success=False, error=f"Failed to create order: {e.message}", code="database_error")


@app.get("/api/orders")
async def my_orders(user: dict = Depends(current_user)):
    return {"orders": await OrderService(db).list_for_user(user["id"])}


@app.get("/api/loyalty")
async def my_loyalty(user: dict = Depends(current_user)):
    return await LoyaltyService(db).account(user["id"])


@app.get("/api/promo-codes/validate")
async def validate_promo_code(code: str = "", user: dict = Depends(current_user)):
    try:
        promo = await PromoService(db).validate(code)
    except PromoCodeError as e:
        status = 404 if e.code == "not_found" else 400
        raise HTTPException(status_code=status, detail={"error": str(e), "code": e.code})
    return {
        "code": promo["code"],
        "discount_type": promo["discount_type"],
        "discount_value": promo["discount_value"],
    }


# ================================================================
# Admin - catalog
# ================================================================

@app.post("/api/admin/products", dependencies=[Depends(require_admin)])
async def create_product(request: Request):
    try:
        product = await CatalogService(db).create_product(await request.json())
    except CatalogError as e:
        raise HTTPException(status_code=400, detail={"error": str(e), "code": e.code})
    return {"success": True, "product": product}


@app.put("/api/admin/products/{product_id}", dependencies=[Depends(require_admin)])
async def update_product(product_id: str, request: Request):
    try:
        product = await CatalogService(db).update_product(product_id, await request.json())
    except CatalogError as e:
        status = 404 if e.code == "not_found" else 400
        raise HTTPException(status_code=status, detail={"error": str(e), "code": e.code})
    return {"success": True, "product": product}


@app.delete("/api/admin/products/{product_id}", dependencies=[Depends(require_admin)])
async def delete_product(product_id: str):
    await CatalogService(db).delete_product(product_id)
    return {"success": True}


@app.get("/api/admin/catalog/export", dependencies=[Depends(require_admin)])
async def export_catalog():
    from datetime import date

    content = await CatalogService(db).export_csv()
    return Response(
        content=content,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="catalog_export_{date.today().isoformat()}.csv"'},
    )


@app.post("/api/admin/catalog/import", dependencies=[Depends(require_admin)])
async def import_catalog(request: Request):
    """Body: the CSV file as text (semicolon separated)"""
    body = (await request.body()).decode("utf-8-sig", errors="replace")
    try:
        result = await CatalogService(db).import_csv(body)
    except CatalogError as e:
        raise HTTPException(status_code=400, detail={"error": str(e), "code": e.code})
    return {"success": True, **result}


@app.post("/api/admin/catalog/woocommerce", dependencies=[Depends(require_admin)])
async def import_woocommerce(req: WooCommerceImportRequest):
    try:
        result = await CatalogService(db).import_woocommerce(req.url)
    except CatalogError as e:
        raise HTTPException(status_code=400, detail={"error": str(e), "code": e.code})
    return {"success": True, **result}


# ================================================================
# Admin - orders
# ================================================================

@app.get("/api/admin/orders", dependencies=[Depends(require_admin)])
async def all_orders(status: str | None = None, store: str | None = None):
    return {"orders": await OrderService(db).list_all(status=status, store=store)}


@app.put("/api/admin/orders/{order_id}/status", response_model=OrderResponse, dependencies=[Depends(require_admin)])
async def update_order_status(order_id: str, req: StatusUpdateRequest):
    try:
        order = await OrderService(db, notifier).update_status(order_id, req.status)
    except OrderNotFound:
        raise HTTPException(status_code=404, detail="Order not found")
    except OrderError as e:
        return failure(OrderResponse, e)
    return OrderResponse(success=True, order=order)


@app.put("/api/admin/orders/{order_id}/tracking", response_model=OrderResponse, dependencies=[Depends(require_admin)])
async def set_order_tracking(order_id: str, req: TrackingRequest):
    try:
        order = await OrderService(db, notifier).set_tracking(order_id, req.tracking_number)
    except OrderNotFound:
        raise HTTPException(status_code=404, detail="Order not found")
    except OrderError as e:
        return failure(OrderResponse, e)
    return OrderResponse(success=True, order=order)


# ================================================================
# Admin - promo codes
# ================================================================

@app.get("/api/admin/promo-codes", dependencies=[Depends(require_admin)])
async def list_promo_codes():
    return {"promo_codes": await PromoService(db).list()}


@app.post("/api/admin/promo-codes", dependencies=[Depends(require_admin)])
async def create_promo_code(req: PromoCodeRequest):
    try:
        promo = await PromoService(db).create(req.model_dump(exclude_none=True))
    except PromoCodeError as e:
        raise HTTPException(status_code=400, detail={"error": str(e), "code": e.code})
    return {"success": True, "promo_code": promo}


@app.put("/api/admin/promo-codes/{code}", dependencies=[Depends(require_admin)])
async def update_promo_code(code: str, req: PromoCodeRequest):
    try:
        promo = await PromoService(db).update(code, req.model_dump(exclude_none=True))
    except PromoCodeError as e:
        status = 404 if e.code == "not_found" else 400
        raise HTTPException(status_code=status, detail={"error": str(e), "code": e.code})
    return {"success": True, "promo_code": promo}


@app.delete("/api/admin/promo-codes/{code}", dependencies=[Depends(require_admin)])
async def delete_promo_code(code: str):
    await PromoService(db).delete(code)
    return {"success": True}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
