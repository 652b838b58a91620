"""
Product catalog - DB mapping, admin CRUD, CSV and WooCommerce import
"""
import csv
import io
import json
from datetime import datetime, timezone
from urllib.parse import urlparse

import httpx
from bs4 import BeautifulSoup

from config import STORES, DEFAULT_PRODUCT_WEIGHT, IMPORT_TIMEOUT, IMPORT_USER_AGENT
from pricing import effective_price, is_sale_active

REQUIRED_FIELDS = ("name", "name_en", "name_zh", "name_vi", "price", "category", "disease", "store")

LANG_SUFFIXES = ("", "_en", "_zh", "_vi")

CSV_HEADERS = [
    "id",
    "name_ru", "name_en", "name_zh", "name_vi",
    "price_retail", "price_wholesale",
    "weight",
    "category",
    "disease",
    "store",
    "image",
    "in_stock",
    "is_sample",
    "short_description_ru", "short_description_en", "short_description_zh", "short_description_vi",
    "description_ru", "description_en", "description_zh", "description_vi",
]

SHORT_DESCRIPTION_LENGTH = 200


class CatalogError(Exception):
    def __init__(self, message, code="catalog_error"):
        super().__init__(message)
        self.code = code


# ================================================================
# DB <-> API mapping
# ================================================================

def product_from_db(row: dict) -> dict:
    product = dict(row)
    for suffix in LANG_SUFFIXES:
        key = f"short_description{suffix}"
        if key in product:
            product[f"shortDescription{suffix}"] = product.pop(key) or ""

    categories = product.pop("disease_categories", None)
    if isinstance(categories, list):
        product["diseaseCategories"] = categories
    elif isinstance(categories, str) and categories:
        try:
            decoded = json.loads(categories)
            product["diseaseCategories"] = decoded if isinstance(decoded, list) else [categories]
        except ValueError:
            product["diseaseCategories"] = [categories]
    elif product.get("disease"):
        product["diseaseCategories"] = [product["disease"]]
    else:
        product["diseaseCategories"] = []

    product["saleActive"] = is_sale_active(row)
    product["effectivePrice"] = effective_price(row)
    return product


def product_to_db(data: dict) -> dict:
    row = {k: v for k, v in data.items() if k not in ("saleActive", "effectivePrice")}
    for suffix in LANG_SUFFIXES:
        key = f"shortDescription{suffix}"
        if key in row:
            row[f"short_description{suffix}"] = row.pop(key)
    if "diseaseCategories" in row:
        row["disease_categories"] = row.pop("diseaseCategories")
    return row


def missing_fields(data: dict):
    return [f for f in REQUIRED_FIELDS if data.get(f) in (None, "")]


def html_to_text(html: str, limit: int | None = None) -> str:
    if not html:
        return ""
    text = BeautifulSoup(html, "html.parser").get_text(" ", strip=True)
    text = " ".join(text.split())
    if limit and len(text) > limit:
        text = text[:limit].rsplit(" ", 1)[0] + "…"
    return text


def _to_float(value, default=None):
    try:
        return float(str(value).replace(",", "."))
    except (TypeError, ValueError):
        return default


# ================================================================
# CSV
# ================================================================

def product_to_csv_row(product: dict) -> list:
    row = [
        product.get("id") or "",
        *[product.get(f"name{s}") or "" for s in LANG_SUFFIXES],
        product.get("price") if product.get("price") is not None else "",
        product.get("wholesale_price") if product.get("wholesale_price") is not None else "",
        product.get("weight") if product.get("weight") is not None else "",
        product.get("category") or "",
        product.get("disease") or "",
        product.get("store") or "",
        product.get("image") or "",
        "false" if product.get("in_stock") is False else "true",
        "true" if product.get("is_sample") is True else "false",
        *[product.get(f"short_description{s}") or "" for s in LANG_SUFFIXES],
        *[product.get(f"description{s}") or "" for s in LANG_SUFFIXES],
    ]
    return row


def export_csv(products) -> str:
    """Semicolon CSV with a BOM so Excel opens it as UTF-8"""
    buf = io.StringIO()
    buf.write("\ufeff")
    writer = csv.writer(buf, delimiter=";", lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for product in products:
        writer.writerow(product_to_csv_row(product))
    return buf.getvalue()


def csv_record_to_db(record: dict) -> dict:
    def text(key):
        value = (record.get(key) or "").strip()
        return value or None

    store = text("store") or "china"
    if store not in STORES:
        raise CatalogError(f"Unknown store: {store}", "unknown_store")

    return {
        "name": text("name_ru") or "",
        "name_en": text("name_en") or "",
        "name_zh": text("name_zh") or "",
        "name_vi": text("name_vi") or "",
        "price": _to_float(record.get("price_retail"), 0),
        "wholesale_price": _to_float(record.get("price_wholesale")),
        "weight": _to_float(record.get("weight")) or float(DEFAULT_PRODUCT_WEIGHT),
        "category": text("category") or "other",
        "disease": text("disease") or "other",
        "store": store,
        "image": text("image"),
        "in_stock": (record.get("in_stock") or "").strip().lower() != "false",
        "is_sample": (record.get("is_sample") or "").strip().lower() == "true",
        "short_description": text("short_description_ru"),
        "short_description_en": text("short_description_en"),
        "short_description_zh": text("short_description_zh"),
        "short_description_vi": text("short_description_vi"),
        "description": text("description_ru"),
        "description_en": text("description_en"),
        "description_zh": text("description_zh"),
        "description_vi": text("description_vi"),
    }


def parse_csv(text: str):
    text = text.lstrip("\ufeff")
    reader = csv.DictReader(io.StringIO(text), delimiter=";")
    if not reader.fieldnames:
        raise CatalogError("CSV file is empty or invalid", "empty_csv")
    # line 1 is the header
    for line_no, record in enumerate(reader, start=2):
        yield line_no, record


# ================================================================
# WooCommerce
# ================================================================

def woocommerce_api_url(url: str) -> str:
    parsed = urlparse(url or "")
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise CatalogError("Invalid URL format, e.g. https://example.com", "invalid_url")
    if "/wp-json/wc/v3/products" in url:
        return url
    api_url = f"{parsed.scheme}://{parsed.netloc}/wp-json/wc/v3/products"
    # consumer_key / consumer_secret travel in the query string
    return f"{api_url}?{parsed.query}" if parsed.query else api_url


def woocommerce_to_db(wp: dict) -> dict:
    name = wp.get("name") or "Unnamed Product"
    description = wp.get("description") or ""
    short = wp.get("short_description") or description
    images = wp.get("images") or []
    categories = wp.get("categories") or []
    short_text = html_to_text(short, SHORT_DESCRIPTION_LENGTH)
    return {
        "name": name,
        "name_en": name,
        "name_zh": name,
        "name_vi": name,
        "price": _to_float(wp.get("price"), 0),
        "weight": _to_float(wp.get("weight")) or float(DEFAULT_PRODUCT_WEIGHT),
        "image": images[0].get("src", "") if images else "",
        "category": categories[0].get("name", "other") if categories else "other",
        "disease": "other",
        "store": "china",
        "in_stock": wp.get("stock_status", "instock") != "outofstock",
        "is_sample": False,
        "short_description": short_text,
        "short_description_en": short_text,
        "short_description_zh": short_text,
        "short_description_vi": short_text,
        "description": description,
        "description_en": description,
        "description_zh": description,
        "description_vi": description,
    }


class CatalogService:
    def __init__(self, db, transport=None):
        self.db = db
        self._transport = transport

    async def list_products(self, store=None, category=None, disease=None, include_out_of_stock=False):
        filters = []
        if not include_out_of_stock:
            filters.append(("in_stock", "eq", True))
        if store:
            filters.append(("store", "eq", store))
        if category:
            filters.append(("category", "eq", category))
        rows = await self.db.select("products", filters, order="created_at.desc")
        products = [product_from_db(r) for r in rows]
        if disease:
            products = [p for p in products if disease in p["diseaseCategories"]]
        return products

    async def create_product(self, data: dict) -> dict:
        missing = missing_fields(data)
        if missing:
            raise CatalogError(f"Missing required fields: {', '.join(missing)}", "missing_fields")
        if data["store"] not in STORES:
            raise CatalogError(f"Unknown store: {data['store']}", "unknown_store")
        row = product_to_db(data)
        row.setdefault("created_at", datetime.now(timezone.utc).isoformat())
        created = await self.db.insert("products", row)
        print(f"[Catalog] ✅ Product created: {created.get('id')}")
        return product_from_db(created)

    async def update_product(self, product_id, data: dict) -> dict:
        row = product_to_db({k: v for k, v in data.items() if k != "id"})
        if "store" in row and row["store"] not in STORES:
            raise CatalogError(f"Unknown store: {row['store']}", "unknown_store")
        rows = await self.db.update("products", [("id", "eq", product_id)], row)
        if not rows:
            raise CatalogError(f"Product not found: {product_id}", "not_found")
        return product_from_db(rows[0])

    async def delete_product(self, product_id):
        await self.db.delete("products", [("id", "eq", product_id)])

    async def export_csv(self) -> str:
        products = await self.db.select("products", order="created_at.desc")
        print(f"[Catalog] 📤 Exporting {len(products)} products")
        return export_csv(products)

    async def import_csv(self, text: str) -> dict:
        created = updated = 0
        errors = []
        for line_no, record in parse_csv(text):
            try:
                row = csv_record_to_db(record)
                product_id = (record.get("id") or "").strip()
                if product_id:
                    rows = await self.db.update("products", [("id", "eq", product_id)], row)
                    if not rows:
                        raise CatalogError(f"product not found: {product_id}", "not_found")
                    updated += 1
                else:
                    row["created_at"] = datetime.now(timezone.utc).isoformat()
                    await self.db.insert("products", row)
                    created += 1
            except Exception as e:
                errors.append(f"Line {line_no}: {e}")
                print(f"[Catalog] ❌ Line {line_no}: {e}")
        print(f"[Catalog] Import complete: {updated} updated, {created} created, {len(errors)} errors")
        return {"created": created, "updated": updated, "errors": errors}

    async def import_woocommerce(self, url: str) -> dict:
        api_url = woocommerce_api_url(url)
        async with httpx.AsyncClient(timeout=IMPORT_TIMEOUT, transport=self._transport) as client:
            resp = await client.get(
                api_url,
                headers={"User-Agent": IMPORT_USER_AGENT, "Accept": "application/json"},
            )
        if resp.status_code == 401:
            raise CatalogError("WooCommerce API requires consumer_key/consumer_secret in the URL", "woocommerce_auth")
        if resp.status_code == 403:
            raise CatalogError("WooCommerce API keys need at least read access", "woocommerce_forbidden")
        if resp.status_code == 404:
            raise CatalogError("WooCommerce REST API not found", "woocommerce_not_found")
        if resp.status_code != 200:
            raise CatalogError(f"WooCommerce API error ({resp.status_code}): {resp.text[:200]}", "woocommerce_error")

        products = resp.json()
        if not isinstance(products, list):
            raise CatalogError("WooCommerce API did not return a product list", "woocommerce_error")

        saved = 0
        now = datetime.now(timezone.utc).isoformat()
        for wp in products:
            try:
                await self.db.insert("products", {**woocommerce_to_db(wp), "created_at": now})
                saved += 1
            except Exception as e:
                print(f"[Catalog] ❌ WooCommerce product {wp.get('id')}: {e}")
        print(f"[Catalog] ✅ WooCommerce import: {saved}/{len(products)} saved")
        return {"found": len(products), "saved": saved}
