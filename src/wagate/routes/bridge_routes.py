"""
Routes for the automation sidecar.

The sidecar hosting BridgeClient instances posts lifecycle events here.
"""

from pydantic import ValidationError
from starlette.requests import Request
from starlette.responses import JSONResponse

from wagate.clients.bridge import BridgeClient
from wagate.logger import get_logger
from wagate.sessions.models import BridgeEvent

logger = get_logger(__name__)


async def bridge_event(request: Request) -> JSONResponse:
    """
    POST /bridge/events - Apply a sidecar event to its session.

    Body: {"token": "+15551234567", "type": "qr", "data": {"qr": "..."}}
    """
    controller = getattr(request.app.state, "controller", None)
    if controller is None:
        return JSONResponse(
            {"success": False, "error": "Session system not initialized"}, status_code=503
        )

    try:
        body = await request.json()
        event = BridgeEvent(**body)
    except ValidationError as e:
        return JSONResponse({"success": False, "error": str(e)}, status_code=400)
    except Exception:
        return JSONResponse({"success": False, "error": "Invalid JSON body"}, status_code=400)

    session = controller.registry.get(event.token)
    if session is None:
        logger.warning(f"Bridge event '{event.type}' for unknown session {event.token}")
        return JSONResponse(
            {"success": False, "error": f"Session not found: {event.token}"},
            status_code=404,
        )

    if not isinstance(session.client, BridgeClient):
        return JSONResponse(
            {"success": False, "error": f"Session {event.token} is not bridge-backed"},
            status_code=409,
        )

    logger.debug(f"Bridge event '{event.type}' for {event.token}")
    applied = session.client.handle_event(event.type, event.data)
    return JSONResponse({"success": True, "accepted": applied})
