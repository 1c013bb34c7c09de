"""Static product catalog.

Products are configuration, not data: the list below is used unless the
PRODUCT_CATALOG config value supplies one. Prices are in euros, with
cents as decimals (19.99); Stripe receives them in cents.
"""

import math
from dataclasses import dataclass
from typing import Union


@dataclass(frozen=True)
class Product:
    id: str
    name: str
    price: Union[int, float]
    points: int

    @property
    def unit_amount(self):
        """Price in the smallest currency unit, as Stripe expects."""
        return int(round(self.price * 100))


def _parse_price(raw):
    """Euro price from config; cents are kept, never truncated."""
    price = float(raw)
    if not math.isfinite(price) or price < 0:
        raise ValueError(f"Invalid price {raw!r}")
    return int(price) if price.is_integer() else price


DEFAULT_PRODUCTS = [
    {"id": "prod_20euro", "name": "Product 20 Euro", "price": 20, "points": 10},
    {"id": "prod_35euro", "name": "Product 35 Euro", "price": 35, "points": 20},
    {"id": "prod_50euro", "name": "Product 50 Euro", "price": 50, "points": 30},
]


class Catalog:
    """Lookup over a fixed list of products."""

    def __init__(self, products=None):
        if products is None:
            products = DEFAULT_PRODUCTS
        self._products = {}
        for item in products:
            product = item if isinstance(item, Product) else Product(
                id=item["id"],
                name=item["name"],
                price=_parse_price(item["price"]),
                points=int(item["points"]),
            )
            if product.points < 0:
                raise ValueError(f"Product {product.id} has negative points")
            self._products[product.id] = product

    def get(self, product_id):
        """Return the Product for product_id, or None if unknown."""
        if not product_id:
            return None
        return self._products.get(product_id)

    def __iter__(self):
        return iter(self._products.values())

    def __len__(self):
        return len(self._products)
