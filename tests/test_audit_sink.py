import asyncio
from contextlib import asynccontextmanager

from sqlalchemy import func, select

from authz.features.audit.models import AuditLog
from authz.features.audit.schemas import AuditEvent, AuditStatus
from authz.features.audit.sink import DatabaseAuditSink, emit_safely

from conftest import TENANT


def denial(user_id="u1"):
    return AuditEvent(
        tenant_id=TENANT,
        user_id=user_id,
        action="permission_check",
        resource_type="resource",
        resource_id="wms_dashboard",
        status=AuditStatus.DENIED,
    )


class GatedSessions:
    """Session factory whose sessions open only once ``gate`` is set."""

    def __init__(self, session_factory):
        self.session_factory = session_factory
        self.gate = asyncio.Event()

    @asynccontextmanager
    async def __call__(self):
        await self.gate.wait()
        async with self.session_factory() as session:
            yield session


async def count_rows(session_factory) -> int:
    async with session_factory() as session:
        return await session.scalar(select(func.count()).select_from(AuditLog))


async def test_database_sink_does_not_wait_for_the_write(session_factory):
    gated = GatedSessions(session_factory)
    sink = DatabaseAuditSink(gated)

    await asyncio.wait_for(sink.emit(denial()), timeout=1)
    assert await count_rows(session_factory) == 0

    gated.gate.set()
    await sink.drain()

    assert await count_rows(session_factory) == 1


async def test_failed_background_write_is_logged(caplog):
    @asynccontextmanager
    async def broken_sessions():
        raise ConnectionError("audit database unreachable")
        yield

    sink = DatabaseAuditSink(broken_sessions)

    await emit_safely(sink, denial())
    await sink.drain()

    assert "Audit write failed" in caplog.text
