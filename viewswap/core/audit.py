"""Audit trail for coin-moving owner and admin actions."""

from typing import Any

from viewswap.core.pagination import paginate
from viewswap.models.audit_log import AuditLog


async def log_event(
    actor_id: str | None,
    action: str,
    subject_type: str,
    subject_id: str,
    details: dict[str, Any] | None = None,
) -> AuditLog:
    return await AuditLog(
        actor_id=actor_id,
        action=action,
        subject_type=subject_type,
        subject_id=subject_id,
        details=details or {},
    ).insert()


async def events_for(subject_type: str, subject_id: str, limit: int = 50) -> list[AuditLog]:
    """Newest first."""
    limit, _ = paginate(limit, 0)
    return (
        await AuditLog.find(AuditLog.subject_type == subject_type, AuditLog.subject_id == subject_id)
        .sort(-AuditLog.created_at)
        .limit(limit)
        .to_list()
    )
