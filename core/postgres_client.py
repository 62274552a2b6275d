"""
PostgreSQL Client Wrapper

Thin wrapper around an asyncpg connection pool.
Provides consistent database access for repositories.

Usage:
    from core.postgres_client import get_postgres_client

    db = await get_postgres_client("benefit_service")
    rows = await db.query("SELECT * FROM benefit.benefits WHERE business_id = $1", [business_id])

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
    PostgreSQL client wrapper.

    Wraps an asyncpg pool and provides:
    - Lazy pool creation
    - Dict rows for simple queries
    - Transaction context manager for atomic writes
    """

    def __init__(
        self,
        service_name: str,
        config: Optional[InfraConfig] = None,
    ):
        """
        Initialize PostgreSQL client wrapper.

        Args:
            service_name: Name of the service using this client
            config: Infrastructure config (loaded from env if not provided)
        """
        self.service_name = service_name
        self.config = config or InfraConfig.from_env()
        self._pool: Optional[asyncpg.Pool] = None

        logger.info(
            f"PostgreSQL client initialized for {service_name}: "
            f"{self.config.postgres_host}:{self.config.postgres_port}/{self.config.postgres_db}"
        )

    async def connect(self) -> None:
        """Create the connection pool"""
        if self._pool is not None:
            return
        self._pool = await asyncpg.create_pool(
            host=self.config.postgres_host,
            port=self.config.postgres_port,
            database=self.config.postgres_db,
            user=self.config.postgres_user,
            password=self.config.postgres_password,
            min_size=self.config.postgres_min_pool,
            max_size=self.config.postgres_max_pool,
            command_timeout=self.config.postgres_command_timeout,
        )
        logger.info(f"PostgreSQL pool ready for {self.service_name}")

    @property
    def pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise RuntimeError("PostgreSQL pool not connected")
        return self._pool

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def health_check(self) -> bool:
        """Check database health"""
        if self._pool is None:
            return False
        try:
            return await self._pool.fetchval("SELECT 1") == 1
        except (asyncpg.PostgresError, OSError) as e:
            logger.warning(f"PostgreSQL health check failed: {e}")
            return False

    async def query(self, sql: str, params: Optional[List[Any]] = None) -> List[Dict[str, Any]]:
        """Execute query and return results"""
        rows = await self.pool.fetch(sql, *(params or []))
        return [dict(row) for row in rows]

    async def query_row(self, sql: str, params: Optional[List[Any]] = None) -> Optional[Dict[str, Any]]:
        """Execute query and return single row"""
        row = await self.pool.fetchrow(sql, *(params or []))
        return dict(row) if row else None

    async def query_value(self, sql: str, params: Optional[List[Any]] = None) -> Any:
        """Execute query and return the first column of the first row"""
        return await self.pool.fetchval(sql, *(params or []))

    async def execute(self, sql: str, params: Optional[List[Any]] = None) -> str:
        """Execute SQL statement"""
        return await self.pool.execute(sql, *(params or []))

    async def execute_many(self, sql: str, params_list: List[List[Any]]) -> None:
        """Execute SQL statement with multiple parameter sets"""
        await self.pool.executemany(sql, params_list)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[asyncpg.Connection]:
        """Acquire a connection and run the block inside one transaction"""
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                yield conn

    async def close(self):
        """Close connection pool"""
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
            logger.info(f"PostgreSQL pool closed for {self.service_name}")


# Singleton instances per service
_postgres_clients: Dict[str, PostgresClientWrapper] = {}


async def get_postgres_client(
    service_name: str,
    config: Optional[InfraConfig] = None,
) -> PostgresClientWrapper:
    """
    Get or create PostgreSQL client for a service.

    Args:
        service_name: Service name
        config: Optional infrastructure config override

    Returns:
        Connected PostgresClientWrapper instance
    """
    if service_name not in _postgres_clients:
        client = PostgresClientWrapper(service_name=service_name, config=config)
        await client.connect()
        _postgres_clients[service_name] = client

    return _postgres_clients[service_name]
