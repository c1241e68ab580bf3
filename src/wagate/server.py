"""
Starlette-based web server for the wagate messaging gateway.

This server provides a REST API with the following endpoints:
- /sessions: Create, list, inspect and remove client sessions
- /sessions/{token}/qr, /qr/{token}: Authentication artifacts
- /sessions/{token}/pairing-code: Pairing-code handshake
- /send-text, /send-image-url: Outbound messages
- /logout: Remove a session by token
- /bridge/events: Lifecycle events from the automation sidecar
- /health: Liveness and session counts
"""

import sys
from contextlib import asynccontextmanager
from typing import Optional

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.routing import Route

from wagate.clients import load_client_factory
from wagate.config import CONFIG, GatewayConfig
from wagate.logger import get_logger, setup_logging
from wagate.middleware import APIKeyAuthMiddleware, RequestLoggingMiddleware
from wagate.routes.bridge_routes import bridge_event
from wagate.routes.health_routes import health_check
from wagate.routes.session_routes import (
    create_session,
    delete_session,
    get_session_artifact,
    get_session_status,
    list_sessions,
    logout,
    request_pairing_code,
    send_image_url,
    send_text,
)
from wagate.sessions.base import LifecycleEvent, SessionState
from wagate.sessions.controller import SessionLifecycleController

logger = get_logger(__name__)


def log_lifecycle_event(event: LifecycleEvent) -> None:
    """Default lifecycle listener: report transitions in the server log."""
    if event.type == SessionState.AWAITING_CODE.value and event.artifact:
        logger.info(f"{event.artifact.kind.value} received for {event.token}")
        logger.debug(f"{event.artifact.kind.value} for {event.token}: {event.artifact.value}")
    elif event.type == SessionState.AUTHENTICATED.value:
        logger.info(f"Client {event.token} is authenticated and ready.")
    elif event.type == SessionState.AUTH_FAILED.value:
        logger.error(f"Authentication failed for {event.token}: {event.reason}")
    elif event.type == SessionState.LOGGED_OUT.value:
        logger.warning(f"Client {event.token} was logged out. Reason: {event.reason}")


def create_app(
    config: Optional[GatewayConfig] = None,
    controller: Optional[SessionLifecycleController] = None,
) -> Starlette:
    """
    Build the gateway application.

    Args:
        config: Gateway settings; the module CONFIG is used when omitted.
        controller: Pre-built controller (tests inject one with a fake client factory).
    """
    config = config or CONFIG.current
    if controller is None:
        controller = SessionLifecycleController.from_config(
            config, load_client_factory(config)
        )

    @asynccontextmanager
    async def lifespan(app: Starlette):
        logger.info("Application startup - initializing session controller")
        controller.auth_dir.mkdir(parents=True, exist_ok=True)
        controller.subscribe(log_lifecycle_event)

        if config.restore_on_startup:
            try:
                await controller.restore_sessions()
            except OSError as e:
                logger.error(f"Failed to restore sessions: {e}")

        yield

        logger.info("Application shutdown - releasing sessions")
        await controller.shutdown()
        controller.unsubscribe(log_lifecycle_event)

    middleware = [
        Middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_methods=["*"],
            allow_headers=["*"],
        ),
        Middleware(RequestLoggingMiddleware),
    ]
    if config.api_keys:
        middleware.append(Middleware(APIKeyAuthMiddleware, api_keys=config.api_keys))

    app = Starlette(
        routes=[
            Route("/health", health_check, methods=["GET"]),
            Route("/sessions", create_session, methods=["POST"]),
            Route("/sessions", list_sessions, methods=["GET"]),
            Route("/sessions/{token}", get_session_status, methods=["GET"]),
            Route("/sessions/{token}", delete_session, methods=["DELETE"]),
            Route("/sessions/{token}/qr", get_session_artifact, methods=["GET"]),
            Route(
                "/sessions/{token}/pairing-code", request_pairing_code, methods=["POST"]
            ),
            Route("/status/{token}", get_session_status, methods=["GET"]),
            Route("/qr/{token}", get_session_artifact, methods=["GET"]),
            Route("/send-text", send_text, methods=["POST"]),
            Route("/send-image-url", send_image_url, methods=["POST"]),
            Route("/logout", logout, methods=["POST"]),
            Route("/bridge/events", bridge_event, methods=["POST"]),
        ],
        middleware=middleware,
        lifespan=lifespan,
    )
    app.state.controller = controller
    app.state.config = config
    return app


def main() -> None:
    """Run the gateway with uvicorn using CONFIG."""
    import uvicorn

    config = CONFIG.current
    if "--debug" in sys.argv:
        config.log_level = "DEBUG"
    setup_logging(level=config.log_level, log_file=config.log_file)

    logger.info(f"Starting wagate on http://{config.host}:{config.port}")
    uvicorn.run(
        create_app(config),
        host=config.host,
        port=config.port,
        log_level=config.log_level.lower(),
    )


if __name__ == "__main__":
    main()
