"""Status-specific lease update handlers."""

import logging
from dataclasses import dataclass

from apps.core.exceptions import ConflictError

from .approvals import LeaseApprovalService, pending_holder_id, same_actor
from .policy import HIGH_IMPACT, OPERATIONAL, classify, prepare_update

logger = logging.getLogger(__name__)


@dataclass
class UpdateResult:
    lease: object
    requires_approval: bool = False
    staged: tuple = ()


def _stage_or_apply(lease, changes, actor, effects):
    groups = classify(changes)
    high_impact, operational = groups[HIGH_IMPACT], groups[OPERATIONAL]

    if operational:
        LeaseApprovalService.apply_direct(lease, operational, actor, effects)
    if high_impact:
        LeaseApprovalService.stage_change(lease, high_impact, actor, effects)
        return UpdateResult(lease, requires_approval=True, staged=tuple(sorted(high_impact)))
    return UpdateResult(lease)


def handle_draft_update(lease, changes, actor, effects):
    if actor.is_approval_role:
        LeaseApprovalService.apply_direct(lease, changes, actor, effects)
        return UpdateResult(lease)
    return _stage_or_apply(lease, changes, actor, effects)


def handle_active_update(lease, changes, actor, effects):
    if actor.is_approval_role:
        LeaseApprovalService.apply_direct(lease, changes, actor, effects)
        return UpdateResult(lease)

    holder = pending_holder_id(lease)
    if holder and not same_actor(holder, actor):
        raise ConflictError(
            "Lease is locked: another staff member has pending changes for this lease."
        )
    return _stage_or_apply(lease, changes, actor, effects)


def handle_pending_signature_update(lease, changes, actor, effects):
    LeaseApprovalService.apply_direct(lease, changes, actor, effects)
    return UpdateResult(lease)


def handle_closed_update(lease, changes, actor, effects):
    LeaseApprovalService.apply_direct(lease, changes, actor, effects)
    return UpdateResult(lease)


HANDLERS = {
    "draft": handle_draft_update,
    "active": handle_active_update,
    "pending_signature": handle_pending_signature_update,
    "closed": handle_closed_update,
}


def route_update(lease, payload, actor, effects):
    """
    Apply ``payload`` to a row-locked ``lease``.

    The field policy runs first and rejects the whole payload on any violation,
    so nothing is written unless every field is acceptable.
    """
    changes, scope = prepare_update(lease, payload, actor)
    logger.debug("Routing update of lease %s (%s) to %s handler", lease.luid, lease.status, scope.handler)
    return HANDLERS[scope.handler](lease, changes, actor, effects)
