"""
Document status workflow gate.

The gate knows how to evaluate one transition rule; the rule set itself
comes from the TransitionRuleStore, so operators can reshape the graph
(including outbound edges from ARCHIVED or EXPIRED) without code changes.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional

from core.metrics import record_transition_decision

from .grants import EffectiveGrants
from .transitions import TransitionRuleStore
from .types import TransitionRule, normalize_status

logger = logging.getLogger(__name__)


# ============================================================================
# Decision Reasons
# ============================================================================

DECISION_ALLOWED = "allowed"
DECISION_BYPASS = "bypass"
DECISION_NO_RULE = "no_rule"
DECISION_INACTIVE = "inactive"
DECISION_INSUFFICIENT_LEVEL = "insufficient_level"
DECISION_MISSING_PERMISSION = "missing_permission"


@dataclass(frozen=True)
class TransitionDecision:
    """Outcome of one transition check."""
    from_status: str
    to_status: str
    allowed: bool
    reason: str
    rule: Optional[TransitionRule] = None

    def to_dict(self):
        return {
            "from_status": self.from_status,
            "to_status": self.to_status,
            "allowed": self.allowed,
            "reason": self.reason,
            "min_level": self.rule.min_level if self.rule else None,
            "required_permission": self.rule.required_permission if self.rule else None,
        }


def evaluate_rule(
    rule: Optional[TransitionRule],
    role_level: int,
    permissions: Iterable[str],
    full_module_bypass: bool,
) -> str:
    """
    Evaluate one rule and name the outcome.

    Missing and inactive rules deny even with the bypass. Otherwise the
    bypass allows, or the level and required permission must both hold.
    """
    if rule is None:
        return DECISION_NO_RULE
    if not rule.is_active:
        return DECISION_INACTIVE
    if full_module_bypass is True:
        return DECISION_BYPASS
    if role_level < rule.min_level:
        return DECISION_INSUFFICIENT_LEVEL
    if rule.required_permission is not None and rule.required_permission not in set(permissions or ()):
        return DECISION_MISSING_PERMISSION
    return DECISION_ALLOWED


def rule_permits(
    rule: Optional[TransitionRule],
    role_level: int,
    permissions: Iterable[str],
    full_module_bypass: bool,
) -> bool:
    return evaluate_rule(rule, role_level, permissions, full_module_bypass) in (
        DECISION_ALLOWED,
        DECISION_BYPASS,
    )


# ============================================================================
# Workflow Gate
# ============================================================================

class WorkflowGate:
    """
    Gates document status transitions by role level and permission.

    Examples:
        >>> gate = WorkflowGate(TransitionRuleStore(source=None))
        >>> gate.is_transition_allowed("DRAFT", "PENDING_REVIEW", 50, {"documents.update"}, False)
        True
        >>> gate.is_transition_allowed("APPROVED", "PUBLISHED", 50, {"documents.publish"}, False)
        False
    """

    def __init__(self, store: TransitionRuleStore):
        self.store = store

    def check_transition(
        self,
        from_status,
        to_status,
        role_level: int,
        permissions: Iterable[str],
        full_module_bypass: bool,
    ) -> TransitionDecision:
        """
        Check a transition and report why it is or is not allowed.

        Raises:
            InvalidInputError: If either status is malformed
        """
        source = normalize_status(from_status)
        target = normalize_status(to_status)

        rule = self.store.get(source, target)
        reason = evaluate_rule(rule, role_level, permissions, full_module_bypass)
        allowed = reason in (DECISION_ALLOWED, DECISION_BYPASS)

        record_transition_decision(allowed=allowed, reason=reason)
        logger.debug(
            f"Transition {source} -> {target}: {reason} "
            f"(level={role_level}, bypass={full_module_bypass})"
        )

        return TransitionDecision(
            from_status=source,
            to_status=target,
            allowed=allowed,
            reason=reason,
            rule=rule,
        )

    def is_transition_allowed(
        self,
        from_status,
        to_status,
        role_level: int,
        permissions: Iterable[str],
        full_module_bypass: bool,
    ) -> bool:
        """
        Check whether a status transition is allowed.

        Args:
            from_status: Current status
            to_status: Requested status
            role_level: Caller's highest role level
            permissions: Caller's effective permissions
            full_module_bypass: Caller holds every core document permission

        Returns:
            True if an active rule exists and the caller satisfies it
        """
        return self.check_transition(
            from_status, to_status, role_level, permissions, full_module_bypass
        ).allowed

    def allowed_transitions(
        self,
        from_status,
        role_level: int,
        permissions: Iterable[str],
        full_module_bypass: bool,
    ) -> List[TransitionRule]:
        """
        Active rules leaving a status that the caller may take, by sort_order.
        """
        held = set(permissions or ())
        return [
            rule
            for rule in self.store.list_by_from(from_status)
            if rule_permits(rule, role_level, held, full_module_bypass)
        ]

    def allowed_target_statuses(
        self,
        from_status,
        role_level: int,
        permissions: Iterable[str],
        full_module_bypass: bool,
    ) -> List[str]:
        return [
            rule.to_status
            for rule in self.allowed_transitions(from_status, role_level, permissions, full_module_bypass)
        ]

    # ------------------------------------------------------------------------
    # EffectiveGrants conveniences
    # ------------------------------------------------------------------------

    def check_for(self, grants: EffectiveGrants, from_status, to_status) -> TransitionDecision:
        return self.check_transition(
            from_status,
            to_status,
            grants.role_level,
            grants.permissions,
            grants.full_document_access,
        )

    def allowed_for(self, grants: EffectiveGrants, from_status) -> List[TransitionRule]:
        return self.allowed_transitions(
            from_status,
            grants.role_level,
            grants.permissions,
            grants.full_document_access,
        )
