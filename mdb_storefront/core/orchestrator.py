"""
Derived-Entity Orchestrator

Reacts to creation events from the persistence facade and creates dependent
entities exactly once per source entity, e.g. a PaymentRequest for an order
paid by UPI or RuPay.

The existence check and the create are not one transaction. The unique
index on ``derivedKey`` is what actually prevents duplicates; the check only
saves a write in the common case.

This module is part of MDB_STOREFRONT.
"""

import logging
from typing import Any

from ..constants import DEFAULT_LIST_LIMIT, DERIVED_KEY_FIELD, ID_FIELD, PAYMENT_REQUEST_METHODS
from ..exceptions import (
    ConfigurationError,
    ConflictError,
    EntityValidationError,
    ExhaustedError,
)
from ..observability import timed_operation
from .facade import PersistenceFacade
from .types import BackfillReport, DerivedRule, Entity

logger = logging.getLogger(__name__)


def _payment_method(entity: Entity) -> str:
    return str(entity.fields.get("paymentMethod") or "").lower()


def payment_request_rule() -> DerivedRule:
    """Orders paid by UPI or RuPay get a pending PaymentRequest."""

    def predicate(order: Entity) -> bool:
        return _payment_method(order) in PAYMENT_REQUEST_METHODS and not order.fields.get("isPaid")

    def build(order: Entity) -> dict[str, Any]:
        method = _payment_method(order)
        fields: dict[str, Any] = {
            "order": order.id,
            "amount": order.fields.get("totalPrice"),
            "paymentMethod": method,
            "status": "pending",
            "notes": f"Auto-generated payment request for {method} payment",
        }
        if order.fields.get("user") is not None:
            fields["user"] = order.fields["user"]
        return fields

    return DerivedRule(
        name="payment-request",
        source_kind="Order",
        target_kind="PaymentRequest",
        predicate=predicate,
        build=build,
        key=lambda order: f"payment-request:{order.id}",
    )


class DerivedEntityOrchestrator:
    """
    Applies derived-entity rules to newly created entities.

    Subscribe ``on_created`` to the facade. Failures are logged and never
    propagate to the create that triggered them. ``reconcile`` applies the
    same rules to entities that already exist, for sources created while no
    orchestrator was listening.

    A rule's target kind must declare a unique index on ``derivedKey``;
    without it nothing stops two deliveries of the same event from both
    creating a dependent when the existence check cannot see the store.

    Example:
        orchestrator = DerivedEntityOrchestrator(facade, [payment_request_rule()])
        facade.subscribe(orchestrator.on_created)
    """

    def __init__(self, facade: PersistenceFacade, rules: list[DerivedRule] | None = None) -> None:
        self._facade = facade
        self._rules: list[DerivedRule] = []
        for rule in rules or []:
            self.register(rule)

    @property
    def rules(self) -> list[DerivedRule]:
        return list(self._rules)

    def register(self, rule: DerivedRule) -> None:
        """
        Add a rule.

        Raises:
            ConfigurationError: If the target kind is unknown or has no
                unique index on ``derivedKey``
        """
        try:
            schema = self._facade.registry.get(rule.target_kind)
        except EntityValidationError as e:
            raise ConfigurationError(
                f"Rule '{rule.name}' targets unknown kind {rule.target_kind}",
                config_key="rules",
                config_value=rule.name,
            ) from e
        if DERIVED_KEY_FIELD not in schema.unique:
            raise ConfigurationError(
                f"Rule '{rule.name}' targets {rule.target_kind}, which has no unique "
                f"index on {DERIVED_KEY_FIELD}",
                config_key="rules",
                config_value=rule.name,
            )
        self._rules.append(rule)

    async def on_created(self, entity: Entity) -> None:
        """Run every matching rule for ``entity``."""
        await self._apply(entity, BackfillReport())

    @timed_operation("orchestrator.reconcile")
    async def reconcile(
        self,
        kind: str,
        filter: dict[str, Any] | None = None,
        batch_size: int = DEFAULT_LIST_LIMIT,
    ) -> BackfillReport:
        """
        Apply the rules to stored entities of ``kind`` matching ``filter``.

        Entities are read in ``_id`` order a page at a time. Dependents that
        already exist are left alone, so running it twice is harmless.
        ``filter`` must not constrain ``_id``.

        Args:
            kind: Source kind to scan
            filter: MongoDB-style filter narrowing the scan
            batch_size: Entities read per page

        Returns:
            BackfillReport; ``changed`` counts dependents created

        Raises:
            ExhaustedError: The source entities could not be read
        """
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        report = BackfillReport()
        last_id: str | None = None
        while True:
            query = dict(filter or {})
            if last_id is not None:
                query[ID_FIELD] = {"$gt": last_id}
            page = await self._facade.list(kind, query, limit=batch_size, sort=[(ID_FIELD, 1)])
            if not page.is_authoritative:
                raise ExhaustedError(
                    f"Cannot read {kind} entities to reconcile",
                    attempts=page.attempts,
                    context={"kind": kind, "scanned": report.scanned},
                )
            for entity in page.entities:
                report.scanned += 1
                last_id = entity.id
                await self._apply(entity, report)
            if len(page.entities) < batch_size:
                break
        logger.info(f"Reconciled {kind}: {report.to_dict()}")
        return report

    async def _apply(self, entity: Entity, report: BackfillReport) -> None:
        if entity.is_synthesized:
            # Placeholders were never stored; nothing may be derived from them
            return
        for rule in self._rules:
            if rule.source_kind != entity.kind:
                continue
            try:
                if not rule.predicate(entity):
                    continue
                if await self._derive(rule, entity):
                    report.changed += 1
                else:
                    report.skipped += 1
            except Exception as e:
                report.failed += 1
                logger.error(
                    f"Derived rule '{rule.name}' failed for {entity.kind} id={entity.id}: {e}",
                    exc_info=True,
                )

    async def _derive(self, rule: DerivedRule, entity: Entity) -> bool:
        """Create the dependent of ``entity``; False if it already existed."""
        key = rule.key(entity)

        existing = await self._facade.list(rule.target_kind, {DERIVED_KEY_FIELD: key}, limit=1)
        if existing.is_authoritative and existing.entities:
            logger.debug(f"Rule '{rule.name}': {rule.target_kind} for key={key} already exists")
            return False

        fields = rule.build(entity)
        fields[DERIVED_KEY_FIELD] = key
        try:
            created = await self._facade.create(rule.target_kind, fields)
        except ConflictError:
            logger.info(
                f"Rule '{rule.name}': {rule.target_kind} for key={key} was created concurrently"
            )
            return False
        logger.info(
            f"Rule '{rule.name}' created {rule.target_kind} id={created.entity.id} "
            f"for {entity.kind} id={entity.id}"
        )
        return True
