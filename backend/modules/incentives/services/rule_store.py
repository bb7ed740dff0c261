# backend/modules/incentives/services/rule_store.py

"""
Rule Store accessor.

Resolves the single active version of a rule (kind, scope) at an instant
and publishes new versions. Overlapping active windows are a data
integrity defect and are reported as ``RuleConflict``, never resolved by
picking one.
"""

import copy
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import ValidationError
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from core.memory_cache import LRUCache
from ..config.incentive_config import IncentiveConfig, get_incentive_config
from ..enums.incentive_enums import RuleKind
from ..exceptions import (
    NoActiveRule,
    RuleConflict,
    RuleImmutableError,
    RuleNotFound,
    RuleValidationError,
)
from ..models.payout_models import IncentivePayout
from ..models.rule_models import DEFAULT_SCOPE, IncentiveRule
from ..schemas.rule_schemas import PAYLOAD_SCHEMAS, RuleVersion
from .audit_service import IncentiveAuditService

logger = logging.getLogger(__name__)

_UNCACHED = object()
_ALL_SCOPES = "*"

# Closing a superseded window one tick before its successor starts
WINDOW_RESOLUTION = timedelta(microseconds=1)


class RuleStore:
    def __init__(
        self,
        db: Session,
        clock: Callable[[], datetime] = datetime.utcnow,
        cache: Optional[LRUCache] = None,
        config: Optional[IncentiveConfig] = None,
        audit: Optional[IncentiveAuditService] = None,
    ):
        self.db = db
        self.clock = clock
        self.config = config or get_incentive_config()
        self.cache = cache or LRUCache(
            max_size=self.config.RULE_CACHE_MAX_SIZE,
            ttl_seconds=self.config.RULE_CACHE_TTL_SECONDS,
        )
        self.audit = audit or IncentiveAuditService(
            db, clock=clock, default_actor=self.config.AUDIT_SYSTEM_ACTOR
        )

    # Resolution ---------------------------------------------------------

    def get_active_rule(
        self,
        kind: Union[RuleKind, str],
        scope: str = DEFAULT_SCOPE,
        at: Optional[datetime] = None,
    ) -> Optional[RuleVersion]:
        """
        Return the rule version active at ``at`` or ``None``.

        Raises:
            RuleConflict: more than one version is active for (kind, scope)
        """
        kind = RuleKind(kind)
        at = at or self.clock()
        cache_key = (kind.value, scope, self._bucket(at))

        cached = self.cache.get(cache_key, _UNCACHED)
        if cached is not _UNCACHED:
            return cached

        rows = self._active_query(kind, at).filter(IncentiveRule.scope == scope).all()
        if len(rows) > 1:
            raise self._conflict(kind, scope, rows, at)

        version = self._snapshot(rows[0]) if rows else None
        self.cache.set(cache_key, version)
        return version

    def require_active_rule(
        self,
        kind: Union[RuleKind, str],
        scope: str = DEFAULT_SCOPE,
        at: Optional[datetime] = None,
    ) -> RuleVersion:
        at = at or self.clock()
        version = self.get_active_rule(kind, scope, at)
        if version is None:
            raise NoActiveRule(RuleKind(kind).value, scope, at)
        return version

    def get_active_rules(
        self, kind: Union[RuleKind, str], at: Optional[datetime] = None
    ) -> List[RuleVersion]:
        """Active version of every scope of ``kind``, ordered by scope."""
        kind = RuleKind(kind)
        at = at or self.clock()
        cache_key = (kind.value, _ALL_SCOPES, self._bucket(at))

        cached = self.cache.get(cache_key, _UNCACHED)
        if cached is not _UNCACHED:
            return list(cached)

        by_scope: Dict[str, List[IncentiveRule]] = {}
        for row in self._active_query(kind, at).all():
            by_scope.setdefault(row.scope, []).append(row)

        versions = []
        for scope in sorted(by_scope):
            rows = by_scope[scope]
            if len(rows) > 1:
                raise self._conflict(kind, scope, rows, at)
            versions.append(self._snapshot(rows[0]))

        self.cache.set(cache_key, tuple(versions))
        return versions

    def get_rule(self, rule_id: str) -> RuleVersion:
        return self._snapshot(self._get_row(rule_id))

    def list_rules(
        self,
        kind: Optional[Union[RuleKind, str]] = None,
        is_active: Optional[bool] = None,
        scope: Optional[str] = None,
    ) -> List[RuleVersion]:
        query = self.db.query(IncentiveRule)
        if kind is not None:
            query = query.filter(IncentiveRule.kind == RuleKind(kind))
        if is_active is not None:
            query = query.filter(IncentiveRule.is_active == is_active)
        if scope is not None:
            query = query.filter(IncentiveRule.scope == scope)
        rows = query.order_by(
            IncentiveRule.kind, IncentiveRule.scope, IncentiveRule.version
        ).all()
        return [self._snapshot(row) for row in rows]

    # Authoring ----------------------------------------------------------

    def publish_rule(
        self,
        kind: Union[RuleKind, str],
        name: str,
        payload: Dict[str, Any],
        effective_from: datetime,
        effective_to: Optional[datetime] = None,
        scope: str = DEFAULT_SCOPE,
        actor: Optional[str] = None,
        rule_id: Optional[str] = None,
    ) -> RuleVersion:
        """
        Validate and store a new rule version.

        Raises:
            RuleValidationError: payload or window is invalid
            RuleConflict: the window overlaps an active version of (kind, scope)
        """
        kind = RuleKind(kind)
        try:
            row = self._insert_version(
                kind, name, payload, effective_from, effective_to, scope, actor, rule_id
            )
            self.audit.record(
                action="RULE_PUBLISHED",
                entity_type="incentive_rule",
                entity_id=row.rule_id,
                new_values=self._audit_values(row),
                actor=actor,
            )
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to publish {kind.value} rule for scope {scope}: {e}")
            self.audit.record_failure(
                "RULE_PUBLISH_FAILED",
                e,
                entity_type="incentive_rule",
                entity_id=rule_id,
                metadata={"rule_kind": kind, "scope": scope},
                actor=actor,
            )
            raise

        self.cache.clear()
        logger.info(
            f"Published rule {row.rule_id} ({kind.value}/{scope} v{row.version}) "
            f"effective {effective_from} to {effective_to or 'open'}"
        )
        return self._snapshot(row)

    def supersede_rule(
        self,
        rule_id: str,
        effective_from: datetime,
        payload: Optional[Dict[str, Any]] = None,
        name: Optional[str] = None,
        effective_to: Optional[datetime] = None,
        actor: Optional[str] = None,
    ) -> RuleVersion:
        """Close the current version just before ``effective_from`` and publish its successor."""
        try:
            current = self._get_row(rule_id)
            if effective_from <= current.effective_from:
                raise RuleValidationError(
                    "Successor must start after the current version starts",
                    current.kind.value,
                )
            if current.effective_to is not None and current.effective_to < effective_from:
                raise RuleValidationError(
                    f"Rule {rule_id} already ended at {current.effective_to}",
                    current.kind.value,
                )

            old_window = {"effective_to": current.effective_to}
            current.effective_to = effective_from - WINDOW_RESOLUTION
            self.db.flush()

            successor = self._insert_version(
                current.kind,
                name or current.name,
                payload if payload is not None else copy.deepcopy(current.payload),
                effective_from,
                effective_to,
                current.scope,
                actor,
                None,
            )
            self.audit.record(
                action="RULE_SUPERSEDED",
                entity_type="incentive_rule",
                entity_id=rule_id,
                old_values=old_window,
                new_values={
                    "effective_to": current.effective_to,
                    "successor_rule_id": successor.rule_id,
                },
                actor=actor,
            )
            self.audit.record(
                action="RULE_PUBLISHED",
                entity_type="incentive_rule",
                entity_id=successor.rule_id,
                new_values=self._audit_values(successor),
                actor=actor,
            )
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            self.audit.record_failure(
                "RULE_SUPERSEDE_FAILED",
                e,
                entity_type="incentive_rule",
                entity_id=rule_id,
                actor=actor,
            )
            raise

        self.cache.clear()
        logger.info(f"Rule {rule_id} superseded by {successor.rule_id} from {effective_from}")
        return self._snapshot(successor)

    def update_rule(
        self,
        rule_id: str,
        actor: Optional[str] = None,
        name: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
        effective_from: Optional[datetime] = None,
        effective_to: Optional[datetime] = None,
    ) -> RuleVersion:
        """
        Edit a version in place. Only allowed while no payout references it;
        referenced versions must be changed through ``supersede_rule``.
        """
        try:
            row = self._get_row(rule_id)
            if self.is_referenced(rule_id):
                raise RuleImmutableError(rule_id)

            old_values = self._audit_values(row)
            if payload is not None:
                row.payload = self._validate_payload(row.kind, payload)
            new_from = effective_from or row.effective_from
            new_to = effective_to if effective_to is not None else row.effective_to
            self._validate_window(row.kind, new_from, new_to)
            self._check_overlap(row.kind, row.scope, new_from, new_to, exclude_id=row.id)
            row.effective_from = new_from
            row.effective_to = new_to
            if name is not None:
                row.name = name

            self.audit.record(
                action="RULE_UPDATED",
                entity_type="incentive_rule",
                entity_id=rule_id,
                old_values=old_values,
                new_values=self._audit_values(row),
                actor=actor,
            )
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            self.audit.record_failure(
                "RULE_UPDATE_FAILED",
                e,
                entity_type="incentive_rule",
                entity_id=rule_id,
                actor=actor,
            )
            raise

        self.cache.clear()
        return self._snapshot(row)

    def deactivate_rule(self, rule_id: str, actor: Optional[str] = None) -> RuleVersion:
        try:
            row = self._get_row(rule_id)
            if row.is_active:
                row.is_active = False
                self.audit.record(
                    action="RULE_DEACTIVATED",
                    entity_type="incentive_rule",
                    entity_id=rule_id,
                    old_values={"is_active": True},
                    new_values={"is_active": False},
                    actor=actor,
                )
                self.db.commit()
        except Exception as e:
            self.db.rollback()
            self.audit.record_failure(
                "RULE_DEACTIVATE_FAILED",
                e,
                entity_type="incentive_rule",
                entity_id=rule_id,
                actor=actor,
            )
            raise

        self.cache.clear()
        logger.info(f"Rule {rule_id} deactivated by {actor or self.audit.default_actor}")
        return self._snapshot(row)

    def is_referenced(self, rule_id: str) -> bool:
        candidates = (
            self.db.query(IncentivePayout.source_rule_ids)
            .filter(IncentivePayout.source_rule_ids.contains(rule_id))
            .all()
        )
        return any(rule_id in (ids or "").split(",") for (ids,) in candidates)

    # Internals ----------------------------------------------------------

    def _bucket(self, at: datetime) -> int:
        return int(at.timestamp()) // self.config.RULE_CACHE_BUCKET_SECONDS

    def _active_query(self, kind: RuleKind, at: datetime):
        return self.db.query(IncentiveRule).filter(
            IncentiveRule.kind == kind,
            IncentiveRule.is_active.is_(True),
            IncentiveRule.effective_from <= at,
            or_(IncentiveRule.effective_to.is_(None), IncentiveRule.effective_to >= at),
        ).order_by(IncentiveRule.version)

    def _conflict(
        self, kind: RuleKind, scope: str, rows: List[IncentiveRule], at: datetime
    ) -> RuleConflict:
        rule_ids = [row.rule_id for row in rows]
        logger.error(
            f"Rule conflict: {len(rows)} active {kind.value} rules for scope {scope} "
            f"at {at}: {rule_ids}"
        )
        return RuleConflict(kind.value, scope, rule_ids, at)

    def _get_row(self, rule_id: str) -> IncentiveRule:
        row = self.db.query(IncentiveRule).filter(IncentiveRule.rule_id == rule_id).first()
        if not row:
            raise RuleNotFound(rule_id)
        return row

    def _insert_version(
        self,
        kind: RuleKind,
        name: str,
        payload: Dict[str, Any],
        effective_from: datetime,
        effective_to: Optional[datetime],
        scope: str,
        actor: Optional[str],
        rule_id: Optional[str],
    ) -> IncentiveRule:
        stored_payload = self._validate_payload(kind, payload)
        self._validate_window(kind, effective_from, effective_to)
        self._check_overlap(kind, scope, effective_from, effective_to)

        version = (
            self.db.query(func.max(IncentiveRule.version))
            .filter(IncentiveRule.kind == kind, IncentiveRule.scope == scope)
            .scalar()
            or 0
        ) + 1

        row = IncentiveRule(
            rule_id=rule_id or f"{kind.value}:{scope}:v{version}",
            name=name,
            kind=kind,
            scope=scope,
            version=version,
            effective_from=effective_from,
            effective_to=effective_to,
            is_active=True,
            payload=stored_payload,
            created_by=actor or self.audit.default_actor,
        )
        self.db.add(row)
        self.db.flush()
        return row

    def _validate_payload(self, kind: RuleKind, payload: Dict[str, Any]) -> Dict[str, Any]:
        schema = PAYLOAD_SCHEMAS[kind]
        try:
            parsed = schema.model_validate(payload)
        except ValidationError as e:
            raise RuleValidationError(f"Invalid {kind.value} payload: {e}", kind.value)
        return parsed.model_dump(mode="json")

    def _validate_window(
        self, kind: RuleKind, effective_from: datetime, effective_to: Optional[datetime]
    ) -> None:
        if effective_to is not None and effective_to < effective_from:
            raise RuleValidationError(
                "effective_to must not be before effective_from", kind.value
            )

    def _check_overlap(
        self,
        kind: RuleKind,
        scope: str,
        effective_from: datetime,
        effective_to: Optional[datetime],
        exclude_id: Optional[int] = None,
    ) -> None:
        query = self.db.query(IncentiveRule).filter(
            IncentiveRule.kind == kind,
            IncentiveRule.scope == scope,
            IncentiveRule.is_active.is_(True),
            or_(
                IncentiveRule.effective_to.is_(None),
                IncentiveRule.effective_to >= effective_from,
            ),
        )
        if effective_to is not None:
            query = query.filter(IncentiveRule.effective_from <= effective_to)
        if exclude_id is not None:
            query = query.filter(IncentiveRule.id != exclude_id)

        overlapping = query.all()
        if overlapping:
            raise RuleConflict(
                kind.value, scope, [row.rule_id for row in overlapping], effective_from
            )

    @staticmethod
    def _snapshot(row: IncentiveRule) -> RuleVersion:
        return RuleVersion(
            rule_id=row.rule_id,
            name=row.name,
            kind=row.kind,
            scope=row.scope,
            version=row.version,
            effective_from=row.effective_from,
            effective_to=row.effective_to,
            is_active=row.is_active,
            payload=copy.deepcopy(row.payload),
            created_by=row.created_by,
        )

    @staticmethod
    def _audit_values(row: IncentiveRule) -> Dict[str, Any]:
        return {
            "name": row.name,
            "kind": row.kind,
            "scope": row.scope,
            "version": row.version,
            "effective_from": row.effective_from,
            "effective_to": row.effective_to,
            "is_active": row.is_active,
            "payload": row.payload,
        }
