"""Database module for managing connections to CockroachDB or PostgreSQL.

This module handles:
- Database connection pool initialization
- Schema management
- Connection lifecycle
- Serializable units of work with conflict retries
"""

import logging
import ssl
from typing import Optional, Dict, Any, Awaitable, Callable, TypeVar
import backoff
import asyncpg
from urllib.parse import urlparse, parse_qs

from .exceptions import DatabaseError, DatabaseSchemaError, DatabaseNotInitializedError
from .lib.schema_manager import SchemaManager

logger = logging.getLogger(__name__)

T = TypeVar('T')

_pool: Optional[asyncpg.Pool] = None
_schema_manager: Optional[SchemaManager] = None

# Errors that mean "another transaction got there first, run it again"
RETRYABLE_ERRORS = (
    asyncpg.exceptions.SerializationError,
    asyncpg.exceptions.DeadlockDetectedError,
)

def _get_ssl_context() -> ssl.SSLContext:
    """Create SSL context for hosted database connections."""
    ssl_context = ssl.create_default_context()
    ssl_context.verify_mode = ssl.CERT_REQUIRED
    ssl_context.check_hostname = True
    return ssl_context

def _get_connection_kwargs(db_url: str) -> Dict[str, Any]:
    """Get connection kwargs from database URL.

    Args:
        db_url: Database connection URL

    Returns:
        Dict of connection parameters
    """
    parsed = urlparse(db_url)
    params = parse_qs(parsed.query)

    sslmode = params.get('sslmode', ['require'])[0]
    kwargs = {
        'ssl': False if sslmode == 'disable' else _get_ssl_context(),
        'server_settings': {
            'statement_timeout': '300000',  # 5 minutes
        }
    }

    return kwargs

def _strip_query(db_url: str) -> str:
    return db_url.split('?', 1)[0]

@backoff.on_exception(
    backoff.expo,
    (asyncpg.exceptions.PostgresConnectionError, asyncpg.exceptions.CannotConnectNowError),
    max_tries=5
)
async def create_database_if_not_exists(db_url: str) -> None:
    """Create the database if it doesn't exist.

    Args:
        db_url: Database connection URL
    """
    parsed = urlparse(db_url)
    db_name = parsed.path.strip('/') or 'defaultdb'

    # Both CockroachDB and PostgreSQL ship a "postgres" database
    base_url = parsed._replace(path='/postgres').geturl()
    logger.info(f"Checking that database {db_name} exists")

    conn_kwargs = _get_connection_kwargs(base_url)
    try:
        conn = await asyncpg.connect(_strip_query(base_url), **conn_kwargs)
    except (OSError, asyncpg.exceptions.InvalidCatalogNameError) as e:
        logger.warning(f"Could not reach maintenance database, skipping create: {e}")
        return

    try:
        exists = await conn.fetchval(
            'SELECT EXISTS(SELECT 1 FROM pg_database WHERE datname = $1)',
            db_name
        )
        if not exists:
            await conn.execute(f'CREATE DATABASE "{db_name}"')
            logger.info(f"Created database {db_name}")
    finally:
        await conn.close()

@backoff.on_exception(
    backoff.expo,
    (asyncpg.exceptions.PostgresConnectionError, asyncpg.exceptions.CannotConnectNowError),
    max_tries=5
)
async def init_db(db_url: Optional[str] = None, create_database: bool = True) -> asyncpg.Pool:
    """Initialize the database connection pool and schema.

    Args:
        db_url: Optional database URL. If not provided, will use settings.
        create_database: Create the target database first if it is missing

    Returns:
        The connection pool

    Raises:
        ValueError: If database URL is not provided
        DatabaseSchemaError: If the schema cannot be applied
    """
    global _pool, _schema_manager

    # Import here to avoid circular imports
    from config import settings_conf

    url = db_url or settings_conf.get('db_url')
    if not url:
        raise ValueError("Database URL not provided")

    try:
        if create_database:
            await create_database_if_not_exists(url)

        _pool = await asyncpg.create_pool(
            _strip_query(url),
            min_size=2,
            max_size=20,
            max_queries=10000,
            max_inactive_connection_lifetime=300.0,
            command_timeout=60.0,
            **_get_connection_kwargs(url)
        )

        _schema_manager = SchemaManager(_pool)
        await _schema_manager.initialize()
        return _pool

    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise

async def get_pool() -> asyncpg.Pool:
    """Get the database connection pool.

    Returns:
        The connection pool

    Raises:
        DatabaseNotInitializedError: If pool could not be created
    """
    if not _pool:
        await init_db()
    if not _pool:
        raise DatabaseNotInitializedError("Failed to initialize database pool")
    return _pool

async def close() -> None:
    """Close the database connection pool."""
    global _pool, _schema_manager

    if _pool:
        await _pool.close()
        _pool = None
        _schema_manager = None

def _log_retry(details):
    logger.warning(
        f"Transaction conflict, retrying ({details['tries']} tries so far, "
        f"waited {details['wait']:.2f}s)"
    )

@backoff.on_exception(
    backoff.expo,
    RETRYABLE_ERRORS,
    max_tries=5,
    on_backoff=_log_retry
)
async def run_in_transaction(
    pool: asyncpg.Pool,
    work: Callable[[asyncpg.Connection], Awaitable[T]]
) -> T:
    """Run ``work(conn)`` inside one serializable transaction.

    The whole unit is re-run on a serialization conflict, so ``work`` must do
    all of its reads and writes through ``conn`` and must not have side
    effects outside the database.

    Raises:
        DatabaseError: For any database failure other than a retried conflict
    """
    try:
        async with pool.acquire() as conn:
            async with conn.transaction(isolation='serializable'):
                return await work(conn)
    except RETRYABLE_ERRORS:
        raise
    except asyncpg.exceptions.PostgresError as e:
        logger.error(f"Transaction failed: {e}")
        raise DatabaseError(str(e)) from e

# Export public interface
__all__ = [
    'init_db',
    'get_pool',
    'close',
    'run_in_transaction',
    'DatabaseError',
    'DatabaseSchemaError',
    'DatabaseNotInitializedError'
]
