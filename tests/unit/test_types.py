"""
Unit tests for the core value types.
"""

from datetime import datetime, timezone

import pytest
from bson import ObjectId

from mdb_storefront.core.types import AccessResult, AttemptRecord, Entity, Source


class TestEntity:
    """Test Entity conversion."""

    def test_from_document_splits_store_fields(self):
        oid = ObjectId()
        now = datetime.now(timezone.utc)
        document = {
            "_id": oid,
            "_version": 3,
            "createdAt": now,
            "updatedAt": now,
            "name": "Lamps",
            "slug": "lamps",
        }

        entity = Entity.from_document("Category", document, Source.SECONDARY)

        assert entity.id == str(oid)
        assert entity.version == 3
        assert entity.fields == {"name": "Lamps", "slug": "lamps"}
        assert entity.created_at == now
        assert entity.source == Source.SECONDARY
        assert not entity.is_synthesized

    def test_to_dict(self):
        entity = Entity(id="1", kind="Category", fields={"name": "Lamps"}, source=Source.PRIMARY)

        assert entity.to_dict() == {
            "id": "1",
            "kind": "Category",
            "version": 1,
            "fields": {"name": "Lamps"},
            "created_at": None,
            "updated_at": None,
            "source": "primary",
        }


class TestAccessResult:
    """Test AccessResult accessors."""

    def _entity(self, id="1"):
        return Entity(id=id, kind="Category", fields={"name": id})

    def test_single_payload(self):
        result = AccessResult(self._entity(), Source.PRIMARY)

        assert result.is_authoritative
        assert result.entity.id == "1"
        assert [e.id for e in result.entities] == ["1"]

    def test_list_payload(self):
        result = AccessResult([self._entity("1"), self._entity("2")], Source.SYNTHESIZED)

        assert not result.is_authoritative
        with pytest.raises(TypeError):
            result.entity
        assert len(result.entities) == 2

    def test_to_dict_includes_attempts(self):
        attempt = AttemptRecord(
            path="primary",
            attempt=1,
            outcome="transient",
            started_at=datetime(2024, 1, 1),
            duration_ms=12.345,
            error="AutoReconnect: down",
        )
        result = AccessResult([self._entity()], Source.SECONDARY, [attempt])

        data = result.to_dict()

        assert data["source"] == "secondary"
        assert data["authoritative"] is True
        assert data["data"][0]["id"] == "1"
        assert data["attempts"][0]["duration_ms"] == 12.35
        assert data["attempts"][0]["started_at"] == "2024-01-01T00:00:00"
