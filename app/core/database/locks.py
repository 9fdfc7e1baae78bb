"""
Locks that serialize check-and-apply sequences guarding an aggregate invariant.

Reading the current state, validating it and writing the change must happen
as one step per invariant key, otherwise two concurrent callers can both pass
a check against the same stale read. Within a process this is an asyncio lock
per key. On PostgreSQL a transaction-scoped advisory lock is also taken, so
separate worker processes serialize as well; it is released on commit or
rollback, which is why callers must finish their transaction inside the block.

Usage:
    async with invariant_lock(db, SUPER_ADMIN_COUNT_LOCK):
        count = await directory.count_super_admins()
        ...
        await db.commit()
"""
import asyncio
import weakref
import zlib
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.errors import StoreUnavailable
from app.utils import get_logger


log = get_logger(__name__)

SUPER_ADMIN_COUNT_LOCK = "super_admin_count"

# asyncio.Lock binds to the loop it first waits on, so keep one registry per loop.
# Locks are held weakly: an entry lives only while someone holds or awaits it.
_registries: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, weakref.WeakValueDictionary[str, asyncio.Lock]]" = (
    weakref.WeakKeyDictionary()
)


def _local_lock(key: str) -> asyncio.Lock:
    loop = asyncio.get_running_loop()
    registry = _registries.get(loop)
    if registry is None:
        registry = _registries[loop] = weakref.WeakValueDictionary()
    lock = registry.get(key)
    if lock is None:
        lock = registry[key] = asyncio.Lock()
    return lock


def advisory_key(key: str) -> int:
    """Stable signed 32-bit id for pg_advisory_xact_lock."""
    value = zlib.crc32(key.encode("utf-8"))
    return value - (1 << 32) if value >= (1 << 31) else value


@asynccontextmanager
async def invariant_lock(db: AsyncSession, key: str) -> AsyncIterator[None]:
    lock = _local_lock(key)
    try:
        await asyncio.wait_for(lock.acquire(), timeout=config.STORE_TIMEOUT_SECONDS)
    except asyncio.TimeoutError:
        log.error("Timed out waiting for invariant lock %s", key)
        raise StoreUnavailable(f"Timed out waiting for lock {key!r}")
    try:
        bind = db.get_bind()
        if bind.dialect.name == "postgresql":
            await db.execute(text("SELECT pg_advisory_xact_lock(:key)"), {"key": advisory_key(key)})
        yield
    finally:
        lock.release()
