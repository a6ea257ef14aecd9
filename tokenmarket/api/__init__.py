"""API router registry used by the app factory.

This keeps route module imports and inclusion order in one place so
`tokenmarket.main` stays focused on startup wiring.
"""

from __future__ import annotations

from fastapi import APIRouter

from . import auctions, health, ledger, listings, sales

API_PREFIX = "/api/v1"

API_ROUTERS: tuple[APIRouter, ...] = (
    health.router,
    listings.router,
    auctions.router,
    sales.router,
    ledger.router,
)

__all__ = ["API_PREFIX", "API_ROUTERS"]
