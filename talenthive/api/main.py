"""
FastAPI application - Main entry point
"""

from dotenv import load_dotenv

load_dotenv()

import logging
import os
from datetime import datetime
from typing import Optional
from urllib.parse import urlparse

from fastapi import FastAPI, WebSocket, WebSocketDisconnect, status
from fastapi.middleware.cors import CORSMiddleware

from talenthive import __version__
from talenthive.api.dependencies import Services, bearer_token, build_services, resolve_user
from talenthive.api.endpoints.admin import router as admin_router
from talenthive.api.endpoints.community import router as community_router
from talenthive.api.endpoints.contracts import router as contracts_router
from talenthive.api.endpoints.disputes import router as disputes_router
from talenthive.api.endpoints.payments import router as payments_router
from talenthive.api.endpoints.projects import router as projects_router
from talenthive.api.endpoints.support import router as support_router
from talenthive.api.endpoints.users import router as users_router
from talenthive.error_handler import register_error_handlers
from talenthive.utils.config_loader import load_settings

# Setup logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

API_ROUTERS = [
    users_router,
    projects_router,
    contracts_router,
    payments_router,
    disputes_router,
    support_router,
    community_router,
    admin_router,
]


def create_app(services: Optional[Services] = None, *, start_jobs: bool = True) -> FastAPI:
    services = services or build_services(load_settings())
    settings = services.settings

    app = FastAPI(
        title="TalentHive Marketplace API",
        description="Freelance marketplace backend: contracts, milestone escrow, disputes, reviews and messaging",
        version=__version__,
    )
    app.state.services = services

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_error_handlers(app)

    for router in API_ROUTERS:
        app.include_router(router, prefix="/api/v1")
        app.include_router(router, prefix="/api")  # same routes under /api

    @app.get("/", tags=["Health"])
    async def root():
        return {"service": "TalentHive Marketplace API", "status": "healthy", "version": __version__, "timestamp": datetime.now().isoformat()}

    @app.get("/health", tags=["Health"])
    async def health_check():
        """Detailed health check (database, cache)."""
        db_ok = services.db.ping()
        cache_ok = services.cache.ping()
        return {
            "status": "healthy" if db_ok and cache_ok else "degraded",
            "database": {"postgres": "connected" if db_ok else "unavailable", "redis": "connected" if cache_ok else "unavailable"},
            "online_users": len(services.manager.online_users()),
            "timestamp": datetime.now().isoformat(),
        }

    @app.websocket("/ws")
    async def websocket_events(websocket: WebSocket):
        """
        Presence, typing and push channel.

        - Authenticated with the same bearer token as REST, sent as
          `Authorization: Bearer <token>` or the `token` query parameter.
        - Client frames: {"type": "join_conversation" | "leave_conversation" |
          "typing" | "stop_typing" | "read" | "ping", "conversation_id": "..."}
        - Server frames: {"event": "...", "data": {...}}
        """
        token = bearer_token(websocket.headers.get("authorization")) or websocket.query_params.get("token")
        user = resolve_user(services, token)
        if user is None:
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return

        await websocket.accept()
        await services.manager.connect(user.id, websocket)
        try:
            while True:
                try:
                    data = await websocket.receive_json()
                except WebSocketDisconnect:
                    break
                except ValueError:
                    await websocket.send_json({"event": "error", "data": {"message": "Frames must be JSON objects"}})
                    continue
                if not isinstance(data, dict):
                    await websocket.send_json({"event": "error", "data": {"message": "Frames must be JSON objects"}})
                    continue
                await services.manager.handle_event(websocket, data)
        finally:
            await services.manager.disconnect(websocket)

    # ============================================================================
    # STARTUP/SHUTDOWN EVENTS
    # ============================================================================
    @app.on_event("startup")
    async def startup_event():
        """Initialize on startup"""
        logger.info("Starting TalentHive Marketplace API...")

        if settings.database_url and settings.use_postgres:
            parsed = urlparse(settings.database_url)
            logger.info(
                "DATABASE_URL target: scheme=%s host=%s port=%s db=%s",
                parsed.scheme, parsed.hostname, parsed.port or 5432, (parsed.path or "").lstrip("/"),
            )
        else:
            logger.info("DATABASE_URL/USE_POSTGRES not set; using in-memory PostgresDB stub")

        # Create database tables if they don't exist
        try:
            services.db.create_tables()
            logger.info("Database tables initialized")
        except Exception as e:
            logger.error(f"Error initializing database: {str(e)}")

        if services.cache.ping():
            logger.info("Redis connection successful")
        else:
            logger.warning("Redis connection failed")

        if start_jobs:
            services.escrow_job.start(
                interval_hours=settings.escrow_release_interval_hours,
                run_on_startup=settings.escrow_release_on_startup,
            )

    @app.on_event("shutdown")
    async def shutdown_event():
        """Cleanup on shutdown"""
        logger.info("Shutting down TalentHive Marketplace API...")
        await services.escrow_job.stop()
        await services.notifications.drain()

    return app


app = create_app()


def run() -> None:
    """Console entry point: `talenthive-api`."""
    import uvicorn

    uvicorn.run("talenthive.api.main:app", host=os.getenv("HOST", "0.0.0.0"), port=int(os.getenv("PORT", "8000")))


if __name__ == "__main__":
    run()
