"""
Status transitions with audit logging and metrics
"""

from typing import Optional

from ticket_holds.core.logging import get_audit_logger
from ticket_holds.core.metrics import metrics_collector
from ticket_holds.models.ticket_hold import TicketHold

audit_logger = get_audit_logger()


def apply_transition(entity, target, reason: str, actor: Optional[int] = None) -> bool:
    """
    Move a hold or link to `target` and record it.

    Returns False when the entity is already in `target`.
    """
    kind = "hold" if isinstance(entity, TicketHold) else "link"
    previous = entity.status
    if not entity.transition_to(target):
        return False
    metrics_collector.record_transition(kind, target.value)
    audit_logger.info(
        f"{kind} {entity.id} {previous.value} -> {target.value}",
        extra={
            "event": "status_transition",
            "entity": kind,
            "entity_id": str(entity.id),
            "from_status": previous.value,
            "to_status": target.value,
            "reason": reason,
            "actor": actor,
        }
    )
    return True
