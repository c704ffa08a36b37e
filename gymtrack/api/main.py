"""
HTTP routes for the gym dashboard - thin pass-through to the query layer.

The query functions already absorb failures into empty payloads, so routes
only translate parameters and headers.
"""

from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from .auth import TokenStore, secret_matches
from .schemas import (
    AccessTokenResponse,
    GymHistoryResponse,
    GymSnapshotResponse,
    HealthResponse,
    StatsData,
)
from ..core import config
from ..core.db import GymStore
from ..core.gyms import fetch_defender_stats, fetch_gym_snapshot
from ..core.history import DEFAULT_PERIOD, fetch_gym_history
from ..util.logging import logger


def get_store(request: Request) -> GymStore:
    return request.app.state.store


def get_token_store(request: Request) -> TokenStore:
    return request.app.state.tokens


def create_app(store: Optional[GymStore] = None, internal_secret: Optional[str] = None) -> FastAPI:
    """
    Build the API application.

    Args:
        store: Store client; defaults to one built from environment configuration
        internal_secret: Shared secret enabling token auth on /api/gyms; defaults to INTERNAL_API_SECRET
    """
    logger.set_debug(config.debug_enabled())

    app = FastAPI(
        title="Gym History API",
        version=config.VERSION,
        description="Faction control history, contested gyms and defender composition",
        docs_url="/docs" if config.debug_enabled() else None,
        redoc_url="/redoc" if config.debug_enabled() else None
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    app.state.store = store or GymStore.from_config()
    app.state.tokens = TokenStore(ttl_sec=config.ACCESS_TOKEN_TTL_SEC)
    app.state.internal_secret = internal_secret if internal_secret is not None else config.INTERNAL_API_SECRET

    @app.get("/health", response_model=HealthResponse)
    def health_check_endpoint(store: GymStore = Depends(get_store)):
        """Check system health."""
        db_health = store.health_check()
        return HealthResponse(
            status="healthy" if db_health else "unhealthy",
            version=config.VERSION,
            db_health=db_health
        )

    @app.get("/api/gym-history", response_model=GymHistoryResponse)
    def gym_history_endpoint(response: Response, period: str = Query(DEFAULT_PERIOD),
                             store: GymStore = Depends(get_store)):
        """Bucketed faction counts, current counts and contested gyms for a period."""
        response.headers["cache-control"] = "no-store"
        return fetch_gym_history(store, period)

    @app.get("/api/gyms", response_model=GymSnapshotResponse)
    def gym_snapshot_endpoint(request: Request, response: Response,
                              x_access_token: Optional[str] = Header(None),
                              x_invoke_path: Optional[str] = Header(None),
                              store: GymStore = Depends(get_store),
                              tokens: TokenStore = Depends(get_token_store)):
        """Live gyms grouped by faction; token protected when an internal secret is set."""
        requires_token = bool(request.app.state.internal_secret)
        if requires_token and not x_invoke_path and not tokens.validate(x_access_token):
            logger.warning("Rejected /api/gyms request without a valid access token")
            raise HTTPException(status_code=401, detail="Unauthorized")

        response.headers["cache-control"] = "no-store"
        return fetch_gym_snapshot(store)

    @app.post("/api/gyms", response_model=AccessTokenResponse)
    def issue_token_endpoint(request: Request, x_internal_secret: Optional[str] = Header(None),
                             tokens: TokenStore = Depends(get_token_store)):
        """Exchange the internal secret for a short-lived access token."""
        expected = request.app.state.internal_secret
        if not expected:
            raise HTTPException(status_code=400, detail="INTERNAL_API_SECRET is not configured")

        if not secret_matches(x_internal_secret, expected):
            raise HTTPException(status_code=401, detail="Unauthorized")

        return AccessTokenResponse(token=tokens.issue(), expires_in=tokens.ttl_sec)

    @app.get("/api/defender-stats", response_model=StatsData)
    def defender_stats_endpoint(response: Response, store: GymStore = Depends(get_store)):
        """Defender composition per faction."""
        response.headers["cache-control"] = "no-store"
        return fetch_defender_stats(store)

    return app
