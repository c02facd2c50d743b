"""
Placeholder Synthesizer

Builds clearly labelled, structurally valid stand-in entities for read
operations that no access path could serve. Placeholder entities are tagged
``Source.SYNTHESIZED`` and have version 0: they were never stored.

This module is part of MDB_STOREFRONT.
"""

import copy
import logging
import types
import uuid
from typing import Any, Literal, Union, get_args, get_origin

from pydantic import BaseModel

from ..schemas import SchemaRegistry
from .types import Entity, Source

logger = logging.getLogger(__name__)

PLACEHOLDER_LABEL = "(placeholder)"

_TEMPLATES: dict[str, dict[str, Any]] = {
    "Product": {
        "name": f"Sample Product {PLACEHOLDER_LABEL}",
        "description": "Product details are temporarily unavailable.",
        "price": 0.0,
        "category": "placeholder-category",
        "stock": 0,
        "images": ["https://placehold.co/800x600?text=Unavailable"],
        "featured": False,
        "slug": "placeholder-product",
    },
    "Category": {
        "name": f"Category {PLACEHOLDER_LABEL}",
        "description": "Category details are temporarily unavailable.",
        "image": "no-image.jpg",
        "slug": "placeholder-category",
    },
    "Order": {
        "orderItems": [
            {
                "name": f"Item {PLACEHOLDER_LABEL}",
                "quantity": 1,
                "image": "https://placehold.co/800x600?text=Unavailable",
                "price": 0.0,
                "product": "placeholder-product",
            }
        ],
        "paymentMethod": "Cash on Delivery",
        "itemsPrice": 0.0,
        "taxPrice": 0.0,
        "shippingPrice": 0.0,
        "totalPrice": 0.0,
        "isPaid": False,
        "status": "pending",
    },
    "PaymentRequest": {
        "order": "placeholder-order",
        "amount": 0.0,
        "paymentMethod": "upi",
        "status": "pending",
        "notes": f"Payment request {PLACEHOLDER_LABEL}",
    },
}


def _default_for(annotation: Any) -> Any:
    origin = get_origin(annotation)
    if origin is Literal:
        return get_args(annotation)[0]
    if origin in (Union, types.UnionType):
        non_none = [a for a in get_args(annotation) if a is not type(None)]
        return _default_for(non_none[0]) if non_none else None
    if origin in (list, tuple, set):
        return []
    if origin is dict:
        return {}
    if annotation is bool:
        return False
    if annotation is int:
        return 0
    if annotation is float:
        return 0.0
    if annotation is str:
        return PLACEHOLDER_LABEL
    if isinstance(annotation, type) and issubclass(annotation, BaseModel):
        return _required_defaults(annotation)
    return None


def _required_defaults(model: type[BaseModel]) -> dict[str, Any]:
    return {
        name: _default_for(info.annotation)
        for name, info in model.model_fields.items()
        if info.is_required()
    }


class PlaceholderSynthesizer:
    """
    Produces placeholder entities per kind.

    Built-in kinds use static templates; any other registered kind gets
    type-derived defaults for the required fields of its model.
    """

    def __init__(self, registry: SchemaRegistry, templates: dict[str, dict[str, Any]] | None = None):
        self._registry = registry
        self._templates = {**_TEMPLATES, **(templates or {})}

    def template_for(self, kind: str) -> dict[str, Any]:
        """Fresh copy of the placeholder fields for ``kind``."""
        schema = self._registry.get(kind)
        template = self._templates.get(kind)
        if template is None:
            template = _required_defaults(schema.model)
        return copy.deepcopy(template)

    def synthesize(self, kind: str, requested_id: str | None = None) -> Entity:
        """
        Build one placeholder entity.

        Args:
            kind: Entity kind
            requested_id: Id the caller asked for; reused so follow-up lookups
                in the same request stay consistent

        Returns:
            Entity tagged Source.SYNTHESIZED
        """
        entity_id = requested_id or f"placeholder-{kind.lower()}-{uuid.uuid4().hex[:8]}"
        logger.warning(f"Serving placeholder {kind} id={entity_id}")
        return Entity(
            id=entity_id,
            kind=kind,
            fields=self.template_for(kind),
            version=0,
            source=Source.SYNTHESIZED,
        )

    def synthesize_many(self, kind: str, count: int) -> list[Entity]:
        return [self.synthesize(kind) for _ in range(count)]
