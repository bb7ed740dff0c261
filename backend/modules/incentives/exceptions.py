# backend/modules/incentives/exceptions.py

"""
Custom exceptions for the incentives module.

Every exception carries a machine-readable code and the (user, period,
rule) context it was raised in, so failures can be written to the audit
trail and reported per unit by batch runners.
"""

from typing import Any, Dict, Iterable, Optional


class IncentiveErrorCodes:
    """Centralized error codes for incentives module"""

    # Rule configuration
    NO_ACTIVE_RULE = "INCENTIVE_NO_ACTIVE_RULE"
    RULE_CONFLICT = "INCENTIVE_RULE_CONFLICT"
    RULE_VALIDATION = "INCENTIVE_RULE_VALIDATION"
    RULE_IMMUTABLE = "INCENTIVE_RULE_IMMUTABLE"
    RULE_NOT_FOUND = "INCENTIVE_RULE_NOT_FOUND"

    # Calculation preconditions
    BELOW_MINIMUM_ACTIVITY = "INCENTIVE_BELOW_MINIMUM_ACTIVITY"
    MONTHLY_PERFORMANCE_NOT_FOUND = "INCENTIVE_MONTHLY_PERFORMANCE_NOT_FOUND"
    NO_APPLICABLE_SLAB = "INCENTIVE_NO_APPLICABLE_SLAB"

    # Spin wheel
    SPIN_CAP_EXCEEDED = "INCENTIVE_SPIN_CAP_EXCEEDED"

    # Ledger
    PAYOUT_NOT_FOUND = "INCENTIVE_PAYOUT_NOT_FOUND"
    INVALID_TRANSITION = "INCENTIVE_INVALID_TRANSITION"

    UNEXPECTED = "INCENTIVE_UNEXPECTED_ERROR"


class IncentiveException(Exception):
    """Base exception for incentives module"""

    def __init__(
        self,
        message: str,
        code: str = IncentiveErrorCodes.UNEXPECTED,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.context = dict(context or {})

    def with_context(self, **context) -> "IncentiveException":
        """Attach (user, period, rule) context without overwriting known keys."""
        for key, value in context.items():
            if value is not None:
                self.context.setdefault(key, value)
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": type(self).__name__,
            "code": self.code,
            "message": self.message,
            "context": {k: str(v) for k, v in self.context.items()},
        }


class NoActiveRule(IncentiveException):
    """No rule of the requested kind/scope is active at the instant"""

    def __init__(self, kind: str, scope: str, at: Any = None):
        super().__init__(
            message=f"No active {kind} rule for scope {scope}",
            code=IncentiveErrorCodes.NO_ACTIVE_RULE,
            context={"rule_kind": kind, "scope": scope, "at": at},
        )
        self.kind = kind
        self.scope = scope


class RuleConflict(IncentiveException):
    """More than one rule version is active for one (kind, scope)"""

    def __init__(self, kind: str, scope: str, rule_ids: Iterable[str], at: Any = None):
        rule_ids = list(rule_ids)
        super().__init__(
            message=(
                f"Overlapping active {kind} rules for scope {scope}: "
                f"{', '.join(rule_ids)}"
            ),
            code=IncentiveErrorCodes.RULE_CONFLICT,
            context={"rule_kind": kind, "scope": scope, "rule_ids": rule_ids, "at": at},
        )
        self.kind = kind
        self.scope = scope
        self.rule_ids = rule_ids


class RuleValidationError(IncentiveException):
    """Rule payload or window failed validation at authoring time"""

    def __init__(self, message: str, kind: Optional[str] = None):
        super().__init__(
            message=message,
            code=IncentiveErrorCodes.RULE_VALIDATION,
            context={"rule_kind": kind},
        )


class RuleNotFound(IncentiveException):
    def __init__(self, rule_id: str):
        super().__init__(
            message=f"Incentive rule {rule_id} not found",
            code=IncentiveErrorCodes.RULE_NOT_FOUND,
            context={"rule_id": rule_id},
        )


class RuleImmutableError(IncentiveException):
    """A rule version referenced by a payout cannot be edited"""

    def __init__(self, rule_id: str):
        super().__init__(
            message=(
                f"Rule {rule_id} is referenced by payouts; publish a new version instead"
            ),
            code=IncentiveErrorCodes.RULE_IMMUTABLE,
            context={"rule_id": rule_id},
        )


class BelowMinimumActivity(IncentiveException):
    def __init__(self, paid_bills_count: int, minimum: int):
        super().__init__(
            message=(
                f"Minimum {minimum} valid bills required per user per day, "
                f"got {paid_bills_count}"
            ),
            code=IncentiveErrorCodes.BELOW_MINIMUM_ACTIVITY,
            context={"paid_bills_count": paid_bills_count, "minimum": minimum},
        )
        self.paid_bills_count = paid_bills_count
        self.minimum = minimum


class MonthlyPerformanceNotFound(IncentiveException):
    def __init__(self, user_id: str, year_month: str, store_id: Optional[str] = None):
        super().__init__(
            message=f"Monthly performance not found for user {user_id} in {year_month}",
            code=IncentiveErrorCodes.MONTHLY_PERFORMANCE_NOT_FOUND,
            context={"user_id": user_id, "period": year_month, "store_id": store_id},
        )


class NoApplicableSlab(IncentiveException):
    def __init__(self, rule_id: str, revenue: Any):
        super().__init__(
            message=f"No slab of rule {rule_id} covers revenue {revenue}",
            code=IncentiveErrorCodes.NO_APPLICABLE_SLAB,
            context={"rule_id": rule_id, "revenue": revenue},
        )


class SpinCapExceeded(IncentiveException):
    def __init__(self, window: str, cap: int, user_id: Optional[str] = None):
        super().__init__(
            message=f"{window.capitalize()} spin limit of {cap} reached",
            code=IncentiveErrorCodes.SPIN_CAP_EXCEEDED,
            context={"window": window, "cap": cap, "user_id": user_id},
        )
        self.window = window
        self.cap = cap


class PayoutNotFound(IncentiveException):
    def __init__(self, payout_id: str):
        super().__init__(
            message=f"Payout {payout_id} not found",
            code=IncentiveErrorCodes.PAYOUT_NOT_FOUND,
            context={"payout_id": payout_id},
        )


class InvalidTransition(IncentiveException):
    """Payout status change not allowed from its current status"""

    def __init__(self, payout_id: str, current: str, target: str):
        super().__init__(
            message=f"Payout {payout_id} cannot move from {current} to {target}",
            code=IncentiveErrorCodes.INVALID_TRANSITION,
            context={"payout_id": payout_id, "from": current, "to": target},
        )
        self.current = current
        self.target = target
