"""
Tenant routing: resolve which logical database a unit of work runs against.

- tenant_key 0 (or None) -> root store
- tenant_key > 0 -> root store's user -> database mapping, root on missing mapping

Callers receive a ``TenantHandle`` and pass it down explicitly; nothing
here swaps a process-wide "current database". Resolved handles and the
engines behind them live in bounded LRU caches with a TTL on mappings.
"""

import asyncio
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import select
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from core.config import settings
from core import database
from core.database import create_engine_for, create_session_maker
from core.exceptions import TenantResolutionError
from models.tenant import Timezone, User, UserDatabase, UserDatabaseMapping

logger = logging.getLogger(__name__)

ROOT_TENANT_KEY = 0


@dataclass(frozen=True)
class TenantContext:
    """Identifies the active logical database and its timezone"""
    tenant_key: int
    db_name: str
    timezone: str
    is_root: bool = False
    is_fallback: bool = False


class TenantHandle:
    """Scoped data-access handle for one tenant database"""

    def __init__(self, context: TenantContext, engine: AsyncEngine):
        self.context = context
        self.engine = engine
        self._session_maker = create_session_maker(engine)

    @property
    def tenant_key(self) -> int:
        return self.context.tenant_key

    @property
    def tzinfo(self) -> ZoneInfo:
        try:
            return ZoneInfo(self.context.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning(
                f"Unknown timezone '{self.context.timezone}' for tenant "
                f"{self.context.tenant_key}; using {settings.DEFAULT_TIMEZONE}"
            )
            return ZoneInfo(settings.DEFAULT_TIMEZONE)

    def session(self) -> AsyncSession:
        """New session bound to this tenant's database"""
        return self._session_maker()

    def __repr__(self) -> str:
        return f"TenantHandle(tenant_key={self.context.tenant_key}, db={self.context.db_name})"


class TenantRouter:
    """
    Resolves tenant keys to handles.

    Attributes:
        cache_size: Maximum number of tenant engines (and handles) kept open
        cache_ttl: Seconds before a resolved mapping is looked up again
    """

    def __init__(
        self,
        root_engine: Optional[AsyncEngine] = None,
        engine_factory: Optional[Callable[[str], AsyncEngine]] = None,
        url_template: Optional[str] = None,
        cache_size: Optional[int] = None,
        cache_ttl: Optional[float] = None,
        default_timezone: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.root_engine = root_engine or database.engine
        self.engine_factory = engine_factory or create_engine_for
        self.url_template = url_template or settings.TENANT_DATABASE_URL_TEMPLATE
        self.cache_size = max(1, cache_size or settings.TENANT_CACHE_SIZE)
        self.cache_ttl = cache_ttl if cache_ttl is not None else settings.TENANT_CACHE_TTL_SECONDS
        self.default_timezone = default_timezone or settings.DEFAULT_TIMEZONE
        self._clock = clock

        root_db = make_url(str(self.root_engine.url)).database or "root"
        self.root_handle = TenantHandle(
            TenantContext(
                tenant_key=ROOT_TENANT_KEY,
                db_name=root_db,
                timezone=self.default_timezone,
                is_root=True,
            ),
            self.root_engine,
        )

        self._handles: "OrderedDict[int, Tuple[TenantHandle, float]]" = OrderedDict()
        self._engines: "OrderedDict[str, AsyncEngine]" = OrderedDict()
        self._lock = asyncio.Lock()

    async def resolve(self, tenant_key: Optional[int] = None) -> TenantHandle:
        """
        Resolve a tenant key to a handle.

        Raises:
            TenantResolutionError: If the root mapping tables cannot be read
        """
        key = int(tenant_key or 0)
        if key <= 0:
            return self.root_handle

        async with self._lock:
            cached = self._handles.get(key)
            if cached and self._clock() - cached[1] < self.cache_ttl:
                self._handles.move_to_end(key)
                return cached[0]

            mapping = await self._lookup_mapping(key)
            if mapping is None:
                logger.warning(f"Tenant database mapping not found for tenant {key}; using root store")
                handle = TenantHandle(
                    TenantContext(
                        tenant_key=key,
                        db_name=self.root_handle.context.db_name,
                        timezone=self.default_timezone,
                        is_root=True,
                        is_fallback=True,
                    ),
                    self.root_engine,
                )
            else:
                db_name, timezone = mapping
                engine = await self._engine_for(db_name)
                handle = TenantHandle(
                    TenantContext(
                        tenant_key=key,
                        db_name=db_name,
                        timezone=timezone or self.default_timezone,
                    ),
                    engine,
                )
                logger.info(f"Resolved tenant {key} to database {db_name}")

            self._handles[key] = (handle, self._clock())
            self._handles.move_to_end(key)
            while len(self._handles) > self.cache_size:
                self._handles.popitem(last=False)
            return handle

    async def with_tenant(self, tenant_key: Optional[int], fn: Callable[[TenantHandle], Awaitable[Any]]) -> Any:
        """Execute ``fn`` against the resolved tenant handle"""
        handle = await self.resolve(tenant_key)
        return await fn(handle)

    async def list_tenant_keys(self) -> List[int]:
        """All tenant keys with a database mapping in the root store"""
        try:
            async with self.root_handle.session() as session:
                result = await session.execute(
                    select(User.id)
                    .join(UserDatabaseMapping, UserDatabaseMapping.user_id == User.id)
                    .join(UserDatabase, UserDatabase.id == UserDatabaseMapping.database_id)
                    .where(
                        User.is_deleted.is_(False),
                        UserDatabase.app_type == settings.TENANT_APP_TYPE,
                    )
                    .order_by(User.id)
                )
                return sorted(set(result.scalars().all()))
        except SQLAlchemyError as e:
            raise TenantResolutionError(
                "Failed to list tenants from root store",
                original_exception=e
            )

    async def dispose(self) -> None:
        """Dispose every cached tenant engine"""
        async with self._lock:
            engines = list(self._engines.values())
            self._engines.clear()
            self._handles.clear()
        for engine in engines:
            await engine.dispose()

    async def _lookup_mapping(self, key: int) -> Optional[Tuple[str, Optional[str]]]:
        try:
            async with self.root_handle.session() as session:
                result = await session.execute(
                    select(UserDatabase.db_name, Timezone.timezone)
                    .select_from(User)
                    .join(UserDatabaseMapping, UserDatabaseMapping.user_id == User.id)
                    .join(UserDatabase, UserDatabase.id == UserDatabaseMapping.database_id)
                    .outerjoin(Timezone, Timezone.id == User.timezone_id)
                    .where(
                        User.id == key,
                        User.is_deleted.is_(False),
                        UserDatabase.app_type == settings.TENANT_APP_TYPE,
                    )
                    .limit(1)
                )
                row = result.first()
        except SQLAlchemyError as e:
            logger.error(f"Error loading tenant database mapping for tenant {key}: {e}")
            raise TenantResolutionError(
                "Failed to read tenant database mapping",
                context={"tenant_key": key},
                original_exception=e
            )

        if row is None or not row[0]:
            return None
        return row[0], row[1]

    async def _engine_for(self, db_name: str) -> AsyncEngine:
        engine = self._engines.get(db_name)
        if engine is not None:
            self._engines.move_to_end(db_name)
            return engine

        engine = self.engine_factory(self.url_template.format(db_name=db_name))
        self._engines[db_name] = engine

        while len(self._engines) > self.cache_size:
            evicted_name, evicted = self._engines.popitem(last=False)
            stale = [k for k, (h, _) in self._handles.items() if h.context.db_name == evicted_name]
            for k in stale:
                del self._handles[k]
            logger.info(f"Evicting tenant engine for database {evicted_name}")
            await evicted.dispose()

        return engine

    def cached_tenants(self) -> Dict[int, str]:
        return {k: h.context.db_name for k, (h, _) in self._handles.items()}
