"""
Catalog, cart and customer records as checkout consumes them.

Catalog and cart CRUD live in other services; only the attributes that
pricing, reservation and notifications need are modelled here.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pawmart.models.serialization import drop_none, money, to_decimal


def effective_price(price: Decimal, discount_price: Optional[Decimal]) -> Decimal:
    """Discount price applies only when set, positive and below the list price."""
    if discount_price is not None and Decimal(0) < discount_price < price:
        return money(discount_price)
    return money(price)


@dataclass
class Variation:
    variation_id: str
    price: Decimal
    stock: int
    name: Optional[str] = None
    discount_price: Optional[Decimal] = None

    @property
    def unit_price(self) -> Decimal:
        return effective_price(self.price, self.discount_price)

    def to_item(self) -> Dict[str, Any]:
        return drop_none({
            "variation_id": self.variation_id,
            "name": self.name,
            "price": self.price,
            "discount_price": self.discount_price,
            "stock": self.stock,
        })

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "Variation":
        discount = item.get("discount_price")
        return cls(
            variation_id=item["variation_id"],
            name=item.get("name"),
            price=to_decimal(item.get("price", 0)),
            discount_price=to_decimal(discount) if discount is not None else None,
            stock=int(item.get("stock", 0)),
        )


@dataclass
class Product:
    product_id: str
    name: str
    price: Decimal
    stock: int = 0
    discount_price: Optional[Decimal] = None
    variations: List[Variation] = field(default_factory=list)
    images: List[str] = field(default_factory=list)
    category: Optional[str] = None
    is_deleted: bool = False

    @property
    def has_variations(self) -> bool:
        return bool(self.variations)

    @property
    def unit_price(self) -> Decimal:
        return effective_price(self.price, self.discount_price)

    def find_variation(self, variation_id: str) -> Optional[int]:
        """Index of the variation in `variations`, or None."""
        for index, variation in enumerate(self.variations):
            if variation.variation_id == variation_id:
                return index
        return None

    def snapshot(self, variation: Optional[Variation] = None) -> Dict[str, Any]:
        """Frozen copy of the attributes an order line keeps."""
        snapshot = {
            "name": self.name,
            "price": self.price,
            "discount_price": self.discount_price,
            "image": self.images[0] if self.images else None,
            "category": self.category,
        }
        if variation is not None:
            snapshot.update({
                "variation_name": variation.name,
                "price": variation.price,
                "discount_price": variation.discount_price,
            })
        return drop_none(snapshot)

    def to_item(self) -> Dict[str, Any]:
        return drop_none({
            "product_id": self.product_id,
            "name": self.name,
            "price": self.price,
            "discount_price": self.discount_price,
            "stock": self.stock,
            "has_variations": self.has_variations,
            "variations": [v.to_item() for v in self.variations],
            "images": list(self.images),
            "category": self.category,
            "is_deleted": self.is_deleted,
        })

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "Product":
        discount = item.get("discount_price")
        return cls(
            product_id=item["product_id"],
            name=item.get("name", ""),
            price=to_decimal(item.get("price", 0)),
            discount_price=to_decimal(discount) if discount is not None else None,
            stock=int(item.get("stock", 0)),
            variations=[Variation.from_item(v) for v in item.get("variations") or []],
            images=list(item.get("images") or []),
            category=item.get("category"),
            is_deleted=bool(item.get("is_deleted", False)),
        )


@dataclass
class CartItem:
    product_id: str
    quantity: int
    variation_id: Optional[str] = None

    def to_item(self) -> Dict[str, Any]:
        return drop_none({
            "product_id": self.product_id,
            "variation_id": self.variation_id,
            "quantity": self.quantity,
        })

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "CartItem":
        return cls(
            product_id=item["product_id"],
            variation_id=item.get("variation_id"),
            quantity=int(item["quantity"]),
        )


@dataclass
class Cart:
    user_id: str
    items: List[CartItem] = field(default_factory=list)
    updated_at: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not self.items

    def to_item(self) -> Dict[str, Any]:
        return drop_none({
            "user_id": self.user_id,
            "items": [i.to_item() for i in self.items],
            "updated_at": self.updated_at,
        })

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "Cart":
        return cls(
            user_id=item["user_id"],
            items=[CartItem.from_item(i) for i in item.get("items") or []],
            updated_at=item.get("updated_at"),
        )


@dataclass
class UserProfile:
    user_id: str
    email: Optional[str] = None
    name: Optional[str] = None
    phone: Optional[str] = None

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "UserProfile":
        return cls(
            user_id=item["user_id"],
            email=item.get("email"),
            name=item.get("name"),
            phone=item.get("phone"),
        )

    def to_item(self) -> Dict[str, Any]:
        return drop_none({
            "user_id": self.user_id,
            "email": self.email,
            "name": self.name,
            "phone": self.phone,
        })
