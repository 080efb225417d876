"""
Central API router that aggregates all route modules.
"""

from fastapi import APIRouter
from waitroom.api.routes import queue, entries, pools, cart, operations

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(queue.router)
api_router.include_router(entries.router)
api_router.include_router(pools.router)
api_router.include_router(cart.router)
api_router.include_router(operations.router)
