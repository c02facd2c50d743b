"""
Kind schemas for the storefront collections.

Each entity kind maps to a MongoDB collection, a pydantic model used by the
mapped access path, the set of fields a create must supply, the field a slug
is derived from (if any) and the fields backed by a unique index.

This module is part of MDB_STOREFRONT.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .constants import DERIVED_KEY_FIELD, SLUG_FIELD
from .exceptions import EntityValidationError


class StoreModel(BaseModel):
    """Base model: fields outside the schema are kept as-is."""

    model_config = ConfigDict(extra="allow")


class Dimensions(BaseModel):
    length: Optional[float] = None
    width: Optional[float] = None
    height: Optional[float] = None


class Product(StoreModel):
    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=2000)
    price: float = Field(ge=0)
    discountPrice: Optional[float] = Field(default=None, ge=0)
    category: str = Field(min_length=1)
    stock: int = Field(ge=0)
    images: List[str] = Field(default_factory=list)
    featured: bool = False
    material: Optional[str] = None
    color: Optional[str] = None
    dimensions: Optional[Dimensions] = None
    slug: Optional[str] = None


class Category(StoreModel):
    name: str = Field(min_length=1, max_length=50)
    description: Optional[str] = Field(default=None, max_length=500)
    image: str = "no-image.jpg"
    slug: Optional[str] = None


class OrderItem(BaseModel):
    name: str
    quantity: int = Field(ge=1)
    image: Optional[str] = None
    price: float = Field(ge=0)
    product: str


class ShippingAddress(BaseModel):
    name: str
    address: str
    city: str
    state: str
    postalCode: str
    country: str = "India"
    phone: str


class Order(StoreModel):
    user: Optional[str] = None
    orderItems: List[OrderItem] = Field(default_factory=list)
    shippingAddress: Optional[ShippingAddress] = None
    paymentMethod: str = Field(min_length=1)
    itemsPrice: float = Field(default=0.0, ge=0)
    taxPrice: float = Field(default=0.0, ge=0)
    shippingPrice: float = Field(default=0.0, ge=0)
    totalPrice: float = Field(ge=0)
    isPaid: bool = False
    status: Literal["pending", "processing", "shipped", "delivered", "cancelled"] = "pending"

    @field_validator("status", mode="before")
    @classmethod
    def _lowercase_status(cls, value: Any) -> Any:
        return value.lower() if isinstance(value, str) else value


class PaymentRequest(StoreModel):
    user: Optional[str] = None
    order: str = Field(min_length=1)
    amount: float = Field(ge=0)
    paymentMethod: Literal["credit_card", "paypal", "upi", "rupay", "bank_transfer", "cod"]
    transactionId: Optional[str] = None
    status: Literal["pending", "completed", "rejected", "cancelled"] = "pending"
    notes: Optional[str] = None
    paymentProof: Optional[str] = None
    derivedKey: Optional[str] = None


@dataclass(frozen=True)
class KindSchema:
    """
    Storage description of one entity kind.

    Attributes:
        kind: Entity kind tag (e.g. "Product")
        collection: MongoDB collection name
        model: Pydantic model enforced by the mapped access path
        required: Fields a create must supply (non-None)
        slug_source: Field the slug is derived from, or None for no slug
        unique: Fields backed by a unique (sparse) index
    """

    kind: str
    collection: str
    model: type[BaseModel]
    required: tuple[str, ...]
    slug_source: Optional[str] = None
    unique: tuple[str, ...] = ()

    @property
    def has_slug(self) -> bool:
        return self.slug_source is not None

    def missing_fields(self, fields: Dict[str, Any]) -> List[str]:
        """Return required fields that are absent or None."""
        return [name for name in self.required if fields.get(name) is None]


class SchemaRegistry:
    """Registry of kind schemas, keyed by kind tag."""

    def __init__(self, schemas: Optional[List[KindSchema]] = None) -> None:
        self._schemas: Dict[str, KindSchema] = {}
        for schema in schemas or []:
            self.register(schema)

    def register(self, schema: KindSchema) -> None:
        self._schemas[schema.kind] = schema

    def get(self, kind: str) -> KindSchema:
        """
        Look up the schema for a kind.

        Raises:
            EntityValidationError: If the kind is not registered
        """
        schema = self._schemas.get(kind)
        if schema is None:
            raise EntityValidationError(f"Unknown entity kind '{kind}'", kind=kind)
        return schema

    def __contains__(self, kind: object) -> bool:
        return kind in self._schemas

    def __iter__(self):
        return iter(self._schemas.values())

    @property
    def kinds(self) -> List[str]:
        return list(self._schemas)


def default_registry() -> SchemaRegistry:
    """Build the registry of the storefront's built-in kinds."""
    return SchemaRegistry(
        [
            KindSchema(
                kind="Product",
                collection="products",
                model=Product,
                required=("name", "price", "category", "stock"),
                slug_source="name",
                unique=(SLUG_FIELD,),
            ),
            KindSchema(
                kind="Category",
                collection="categories",
                model=Category,
                required=("name",),
                slug_source="name",
                unique=("name", SLUG_FIELD),
            ),
            KindSchema(
                kind="Order",
                collection="orders",
                model=Order,
                required=("paymentMethod", "totalPrice"),
            ),
            KindSchema(
                kind="PaymentRequest",
                collection="paymentrequests",
                model=PaymentRequest,
                required=("order", "amount", "paymentMethod"),
                unique=(DERIVED_KEY_FIELD,),
            ),
        ]
    )
