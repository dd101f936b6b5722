"""
PostgreSQL Client Wrapper

Centralized asyncpg pool wrapper giving services a consistent database
access pattern.

Usage:
    from core.postgres_client import PostgresClientWrapper

    db = PostgresClientWrapper("membership_lifecycle_service")
    rows = await db.query("SELECT * FROM membership.subscriptions WHERE member_id = $1", [member_id])

    async with db.transaction() as conn:
        await conn.execute(...)
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

import asyncpg

from core.config import InfraConfig

logger = logging.getLogger(__name__)


class PostgresClientWrapper:
    """
    asyncpg pool wrapper.

    Provides:
    - Lazy pool creation from InfraConfig
    - query / query_row helpers returning plain dicts
    - transaction() yielding a connection inside one transaction
    """

    def __init__(self, service_name: str, config: Optional[InfraConfig] = None):
        self.service_name = service_name
        self.config = config or InfraConfig.from_env()
        self._pool: Optional[asyncpg.Pool] = None

    async def connect(self) -> asyncpg.Pool:
        if self._pool is None:
            self._pool = await asyncpg.create_pool(
                host=self.config.postgres_host,
                port=self.config.postgres_port,
                user=self.config.postgres_user,
                password=self.config.postgres_password,
                database=self.config.postgres_db,
                min_size=self.config.postgres_pool_min,
                max_size=self.config.postgres_pool_max,
            )
            logger.info(
                f"PostgreSQL pool initialized for {self.service_name}: "
                f"{self.config.postgres_host}:{self.config.postgres_port}/{self.config.postgres_db}"
            )
        return self._pool

    async def query(self, sql: str, params: Optional[List[Any]] = None) -> List[Dict[str, Any]]:
        """Execute query and return results"""
        pool = await self.connect()
        rows = await pool.fetch(sql, *(params or []))
        return [dict(row) for row in rows]

    async def query_row(self, sql: str, params: Optional[List[Any]] = None) -> Optional[Dict[str, Any]]:
        """Execute query and return single row"""
        pool = await self.connect()
        row = await pool.fetchrow(sql, *(params or []))
        return dict(row) if row else None

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[asyncpg.Connection]:
        """Acquire a connection and run the block in one transaction"""
        pool = await self.connect()
        async with pool.acquire() as conn:
            async with conn.transaction():
                yield conn

    async def close(self):
        """Close the pool"""
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
            logger.info(f"PostgreSQL pool closed for {self.service_name}")

