from __future__ import annotations

from fastapi import APIRouter

from app.api.v1.endpoints import menu_items


api_router = APIRouter()

api_router.include_router(menu_items.router, prefix="/menu-items", tags=["menu-items"])
