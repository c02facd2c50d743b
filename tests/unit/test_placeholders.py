"""
Unit tests for the PlaceholderSynthesizer.
"""

from typing import List, Literal, Optional

import pytest
from pydantic import BaseModel

from mdb_storefront.core.placeholders import PLACEHOLDER_LABEL, PlaceholderSynthesizer
from mdb_storefront.core.types import Source
from mdb_storefront.exceptions import EntityValidationError
from mdb_storefront.schemas import KindSchema


class Review(BaseModel):
    product: str
    rating: int
    verified: bool
    tags: List[str]
    channel: Literal["web", "app"]
    comment: Optional[str] = None


class TestBuiltInKinds:
    """Test templates of the storefront kinds."""

    @pytest.mark.parametrize("kind", ["Product", "Category", "Order", "PaymentRequest"])
    def test_placeholder_validates_against_model(self, registry, synthesizer, kind):
        entity = synthesizer.synthesize(kind)
        registry.get(kind).model.model_validate(entity.fields)

    @pytest.mark.parametrize("kind", ["Product", "Category", "Order", "PaymentRequest"])
    def test_placeholder_has_required_fields(self, registry, synthesizer, kind):
        entity = synthesizer.synthesize(kind)
        assert registry.get(kind).missing_fields(entity.fields) == []

    def test_placeholder_is_tagged(self, synthesizer):
        entity = synthesizer.synthesize("Product")

        assert entity.source == Source.SYNTHESIZED
        assert entity.is_synthesized
        assert entity.version == 0
        assert PLACEHOLDER_LABEL in entity.fields["name"]

    def test_requested_id_is_kept(self, synthesizer):
        assert synthesizer.synthesize("Product", requested_id="abc").id == "abc"

    def test_generated_id(self, synthesizer):
        entity = synthesizer.synthesize("PaymentRequest")
        assert entity.id.startswith("placeholder-paymentrequest-")

    def test_templates_are_copied_per_call(self, synthesizer):
        first = synthesizer.synthesize("Order")
        first.fields["orderItems"][0]["quantity"] = 99
        first.fields["status"] = "shipped"

        second = synthesizer.synthesize("Order")
        assert second.fields["orderItems"][0]["quantity"] == 1
        assert second.fields["status"] == "pending"

    def test_synthesize_many(self, synthesizer):
        entities = synthesizer.synthesize_many("Category", 3)

        assert len(entities) == 3
        assert len({e.id for e in entities}) == 3
        assert all(e.is_synthesized for e in entities)


class TestOtherKinds:
    """Test kinds without a built-in template."""

    def test_type_derived_defaults(self, registry):
        registry.register(
            KindSchema(kind="Review", collection="reviews", model=Review, required=("product",))
        )
        synthesizer = PlaceholderSynthesizer(registry)

        entity = synthesizer.synthesize("Review")

        Review.model_validate(entity.fields)
        assert entity.fields["channel"] == "web"
        assert entity.fields["tags"] == []
        assert "comment" not in entity.fields

    def test_custom_template(self, registry):
        registry.register(
            KindSchema(kind="Review", collection="reviews", model=Review, required=("product",))
        )
        template = {
            "product": "placeholder-product",
            "rating": 5,
            "verified": False,
            "tags": [],
            "channel": "app",
        }
        synthesizer = PlaceholderSynthesizer(registry, templates={"Review": template})

        assert synthesizer.synthesize("Review").fields == template

    def test_unknown_kind_is_rejected(self, synthesizer):
        with pytest.raises(EntityValidationError):
            synthesizer.synthesize("Spaceship")
