from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from spinecheck.models.audit_log import AuditLog
from spinecheck.models.user import User


async def log_action(
    session: AsyncSession,
    user_id: int | None,
    action: str,
    resource: str,
    resource_id: str | None = None,
    details: dict | None = None,
    ip_address: str | None = None,
) -> None:
    session.add(
        AuditLog(
            user_id=user_id,
            action=action,
            resource=resource,
            resource_id=str(resource_id) if resource_id is not None else None,
            details=details,
            ip_address=ip_address,
        )
    )
    await session.flush()


async def log_operator_action(
    session: AsyncSession,
    request: Request,
    operator: User | None,
    action: str,
    resource: str,
    resource_id: str | None = None,
    details: dict | None = None,
) -> None:
    """Audit an operator action; password-authenticated operators are recorded without a user id."""
    await log_action(
        session,
        operator.id if operator else None,
        action,
        resource,
        resource_id=resource_id,
        details=details,
        ip_address=request.client.host if request.client else None,
    )
