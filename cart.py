"""
Per-store shopping carts
"""
from dataclasses import dataclass, field, asdict

from config import STORES
from pricing import effective_price


class CartError(Exception):
    def __init__(self, message, code="cart_error"):
        super().__init__(message)
        self.code = code


@dataclass
class CartLine:
    product_id: str
    name: str = ""
    price: int = 0
    quantity: int = 1
    weight: float | None = None
    is_sample: bool = False
    image: str = ""

    @property
    def line_total(self):
        return self.price * self.quantity

    def to_dict(self):
        data = asdict(self)
        data["line_total"] = self.line_total
        return data

    @classmethod
    def from_product(cls, product: dict, quantity: int = 1):
        return cls(
            product_id=str(product["id"]),
            name=product.get("name", ""),
            price=effective_price(product),
            quantity=quantity,
            weight=product.get("weight"),
            is_sample=bool(product.get("is_sample")),
            image=product.get("image") or "",
        )


def check_store(store):
    if store not in STORES:
        raise CartError(f"Unknown store: {store}", "unknown_store")
    return store


@dataclass
class Cart:
    store: str
    lines: list = field(default_factory=list)

    def __post_init__(self):
        check_store(self.store)

    # Samples are limited in the china store only
    @property
    def limits_samples(self):
        return self.store == "china"

    def get(self, product_id):
        return next((line for line in self.lines if line.product_id == str(product_id)), None)

    def add(self, product: dict, quantity: int = 1) -> CartLine:
        if quantity <= 0:
            raise CartError("Quantity must be positive", "invalid_quantity")
        if product.get("store") and product["store"] != self.store:
            raise CartError(
                f"Product {product.get('id')} belongs to the {product['store']} store",
                "wrong_store",
            )

        existing = self.get(product["id"])
        is_sample = bool(product.get("is_sample"))

        if is_sample and self.limits_samples:
            if existing or quantity > 1:
                raise CartError("Only one unit of a sample is allowed", "sample_quantity")
            if self.sample_lines:
                raise CartError("Only one sample per order is allowed", "sample_limit")

        if existing:
            existing.quantity += quantity
            return existing

        line = CartLine.from_product(product, quantity)
        self.lines.append(line)
        return line

    def update_quantity(self, product_id, quantity: int):
        line = self.get(product_id)
        if line is None:
            raise CartError(f"Product {product_id} is not in the cart", "not_in_cart")
        if quantity <= 0:
            self.remove(product_id)
            return None
        if line.is_sample and self.limits_samples and quantity > 1:
            raise CartError("Sample quantity can not exceed 1", "sample_quantity")
        line.quantity = quantity
        return line

    def remove(self, product_id):
        self.lines = [line for line in self.lines if line.product_id != str(product_id)]

    def clear(self):
        self.lines = []

    @property
    def is_empty(self):
        return not self.lines

    @property
    def regular_lines(self):
        return [line for line in self.lines if not line.is_sample]

    @property
    def sample_lines(self):
        return [line for line in self.lines if line.is_sample]

    @property
    def subtotal(self):
        return sum(line.line_total for line in self.lines)

    @property
    def subtotal_without_samples(self):
        return sum(line.line_total for line in self.regular_lines)

    @property
    def samples_total(self):
        return sum(line.line_total for line in self.sample_lines)

    @property
    def items_count(self):
        return sum(line.quantity for line in self.lines)

    def to_dict(self):
        return {
            "store": self.store,
            "items": [line.to_dict() for line in self.lines],
            "subtotal": self.subtotal,
            "items_count": self.items_count,
        }


class MultiStoreCart:
    """One independent cart per store"""

    def __init__(self):
        self.carts = {store: Cart(store) for store in STORES}

    def cart(self, store) -> Cart:
        return self.carts[check_store(store)]

    def add(self, product: dict, quantity: int = 1):
        return self.cart(product.get("store")).add(product, quantity)

    def total_by_store(self, store):
        return self.cart(store).subtotal

    @property
    def total_items(self):
        return sum(cart.items_count for cart in self.carts.values())
