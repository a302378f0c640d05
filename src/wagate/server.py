"""
Starlette-based web server for the wagate session gateway.

This server provides a REST API with the following endpoints:
- /health: Liveness check
- /api/session: Create or reuse a session
- /api/send: Send a text or image message with one safe retry
- /api/logout: Logout and delete stored credentials
- /api/restart: Restart a session without losing its login
- /api/sessions: List in-memory sessions
- /api/status/{clientId}: Status of a single session
- /ws: WebSocket room subscriptions for status and QR pushes
"""

import contextlib
from typing import Callable, Optional

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route, WebSocketRoute

from wagate.config import CONFIG, GatewayConfig
from wagate.logger import get_logger, setup_logging
from wagate.middleware import (
    APIKeyAuthMiddleware,
    RateLimitMiddleware,
    RequestLoggingMiddleware,
)
from wagate.notifications import NotificationHub
from wagate.routes.health_routes import health_check
from wagate.routes.session_routes import (
    create_session,
    get_status,
    list_sessions,
    logout_session,
    restart_session,
    send_message,
)
from wagate.routes.ws_routes import notifications_websocket_endpoint
from wagate.sessions.registry import SessionRegistry

setup_logging(level=CONFIG.log_level, log_file=CONFIG.log_file)

logger = get_logger(__name__)

# (config, notifier) -> registry
RegistryFactory = Callable[[GatewayConfig, NotificationHub], SessionRegistry]


async def server_error(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled error on {request.url.path}: {exc}")
    return JSONResponse({"error": str(exc) or "Server error"}, status_code=500)


def create_app(
    config: Optional[GatewayConfig] = None,
    registry_factory: Optional[RegistryFactory] = None,
) -> Starlette:
    """
    Build the gateway application.

    Args:
        config: Gateway configuration; defaults to the environment.
        registry_factory: Builds the session registry at startup; defaults
            to one driving the configured bridge.
    """
    config = config or CONFIG
    registry_factory = registry_factory or SessionRegistry.from_config

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette):
        logger.info("Application startup - initializing session registry")
        hub = NotificationHub()
        registry = registry_factory(config, hub)
        await registry.start()

        app.state.hub = hub
        app.state.registry = registry
        app.state.api_key = config.api_key

        try:
            yield
        finally:
            logger.info("Application shutdown - draining sessions")
            await registry.shutdown()
            await hub.close()

    api_keys = [config.api_key] if config.api_key else []

    return Starlette(
        routes=[
            Route("/health", health_check, methods=["GET"]),
            Route("/api/session", create_session, methods=["POST"]),
            Route("/api/send", send_message, methods=["POST"]),
            Route("/api/logout", logout_session, methods=["POST"]),
            Route("/api/restart", restart_session, methods=["POST"]),
            Route("/api/sessions", list_sessions, methods=["GET"]),
            Route("/api/status/{client_id}", get_status, methods=["GET"]),
            WebSocketRoute("/ws", notifications_websocket_endpoint),
        ],
        middleware=[
            Middleware(
                CORSMiddleware,
                allow_origins=[config.frontend_origin],
                allow_methods=["*"],
                allow_headers=["*"],
            ),
            Middleware(RequestLoggingMiddleware),
            Middleware(APIKeyAuthMiddleware, api_keys=api_keys),
            Middleware(
                RateLimitMiddleware,
                requests_per_minute=config.rate_limit_per_minute,
                whitelist=config.rate_limit_whitelist,
                api_keys=api_keys,
            ),
        ],
        exception_handlers={Exception: server_error},
        lifespan=lifespan,
    )


app = create_app()


if __name__ == "__main__":
    import uvicorn

    logger.info(f"Starting wagate on http://{CONFIG.host}:{CONFIG.port}")
    uvicorn.run(
        app, host=CONFIG.host, port=CONFIG.port, log_level=CONFIG.log_level.lower()
    )
