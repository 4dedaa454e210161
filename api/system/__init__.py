"""System health endpoint."""

import asyncio
import logging
from typing import Optional

import asyncpg
import psutil
from fastapi import APIRouter
from pydantic import BaseModel

from database import get_pool, DatabaseError
from config import ZcashConfigError
from rpc import get_client, RPCError

logger = logging.getLogger(__name__)

# Create router
router = APIRouter(
    prefix="/system",
    tags=["System"]
)

class SystemHealth(BaseModel):
    """Model for system health data."""
    status: str
    cpu_usage: float
    memory_usage: float
    database_status: str
    node_status: str
    block_height: Optional[int] = None

@router.get("/health")
async def get_system_health() -> SystemHealth:
    """Get system health status.

    The API keeps answering when the database or node is down; their status
    fields report it instead.
    """
    cpu_percent = psutil.cpu_percent()
    memory = psutil.virtual_memory()

    try:
        pool = await get_pool()
        async with pool.acquire() as conn:
            await conn.fetchval('SELECT 1')
        db_status = "connected"
    except (DatabaseError, asyncpg.PostgresError, OSError) as e:
        logger.warning(f"Health check could not reach database: {e}")
        db_status = "unavailable"

    block_height = None
    try:
        loop = asyncio.get_running_loop()
        block_height = await loop.run_in_executor(None, get_client().getblockcount)
        node_status = "connected"
    except (RPCError, ZcashConfigError) as e:
        logger.warning(f"Health check could not reach node: {e}")
        node_status = "unavailable"

    healthy = db_status == "connected" and node_status == "connected" and cpu_percent < 80
    return SystemHealth(
        status="healthy" if healthy else "degraded",
        cpu_usage=cpu_percent,
        memory_usage=memory.percent,
        database_status=db_status,
        node_status=node_status,
        block_height=block_height
    )
