"""V1 API router -- aggregates all endpoint routers under /api."""

from __future__ import annotations

from fastapi import APIRouter

from src.dealboard.api.v1 import board, health, maintenance, opportunities, preferences, sync

router = APIRouter(prefix="/api")

router.include_router(health.router)
router.include_router(opportunities.router)
router.include_router(sync.router)
router.include_router(preferences.router)
router.include_router(board.router)
router.include_router(maintenance.router)
