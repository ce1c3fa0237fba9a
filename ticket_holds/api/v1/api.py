"""
Main API Router
Aggregates all API endpoints for v1
"""

from fastapi import APIRouter
from ticket_holds.api.v1.endpoints import holds, links, purchase_links

api_router = APIRouter()

# Include all routers
api_router.include_router(holds.router, prefix="/holds", tags=["holds"])
api_router.include_router(links.router, prefix="/links", tags=["purchase links"])
api_router.include_router(purchase_links.router, prefix="/purchase-links", tags=["public"])
