"""
Audit sinks.

The engine emits events and never fails because of their persistence; the
database sink writes in the background. ``emit_safely`` is the only way
resolvers and routes call a sink.
"""
import asyncio
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from authz.core.database.engine import AsyncSessionLocal
from authz.features.audit.models import AuditLog
from authz.features.audit.schemas import AuditEvent, AuditSeverity, AuditStatus
from authz.utils import get_logger


log = get_logger(__name__)


class AuditSink(Protocol):
    async def emit(self, event: AuditEvent) -> None:
        ...


class LoggingAuditSink:
    """Writes events to the log only. Denials are logged at INFO."""

    async def emit(self, event: AuditEvent) -> None:
        message = (
            f"Audit: tenant={event.tenant_id} user={event.user_id} action={event.action} "
            f"resource={event.resource_type}:{event.resource_id} status={event.status.value}"
        )
        if event.severity == AuditSeverity.ERROR:
            log.error(message)
        elif event.severity == AuditSeverity.WARNING or event.status == AuditStatus.DENIED:
            log.info(message)
        else:
            log.debug(message)


class DatabaseAuditSink(LoggingAuditSink):
    """
    Persists events to ``audit_logs`` using its own session, so an audit write
    never joins (or rolls back) the caller's transaction.

    ``emit`` logs the event and schedules the write; it does not wait for it.
    Failed writes are logged. ``drain`` waits for writes still in flight.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] = AsyncSessionLocal):
        self.session_factory = session_factory
        self._pending: set[asyncio.Task] = set()

    async def emit(self, event: AuditEvent) -> None:
        await super().emit(event)
        task = asyncio.create_task(self._persist(event))
        self._pending.add(task)
        task.add_done_callback(self._finished)

    async def _persist(self, event: AuditEvent) -> None:
        async with self.session_factory() as session:
            session.add(AuditLog(
                tenant_id=event.tenant_id,
                user_id=event.user_id,
                action=event.action,
                resource_type=event.resource_type,
                resource_id=event.resource_id,
                module_code=event.module_code,
                permission_required=event.permission_required,
                status=event.status.value,
                severity=event.severity.value,
                details=event.details,
            ))
            await session.commit()

    def _finished(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            log.warning("Audit write failed", exc_info=task.exception())

    async def drain(self) -> None:
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)


async def emit_safely(sink: AuditSink | None, event: AuditEvent) -> None:
    """Hand an event to a sink; failures are logged and swallowed."""
    if sink is None:
        return
    try:
        await sink.emit(event)
    except Exception:
        log.warning(f"Audit sink failed for action {event.action}", exc_info=True)


_default_sink = DatabaseAuditSink()


def get_audit_sink() -> AuditSink:
    """
    FastAPI dependency returning the process-wide audit sink.

    Tests override it through ``app.dependency_overrides``.
    """
    return _default_sink
