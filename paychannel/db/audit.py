from sqlalchemy.ext.asyncio import AsyncSession

from paychannel.db.models import AuditLog


def record_audit(session: AsyncSession, actor: str, action: str, **details) -> AuditLog:
    """Add an append-only audit row to the caller's transaction."""
    entry = AuditLog(actor=actor, action=action, details=details or None)
    session.add(entry)
    return entry
