"""
Routes for session management.

Provides:
- Session CRUD (/sessions, /status/{token}, /logout)
- Authentication artifacts (/sessions/{token}/qr, /qr/{token}, pairing codes)
- Outbound messages (/send-text, /send-image-url)
"""

import functools

from pydantic import BaseModel, ValidationError
from starlette.requests import Request
from starlette.responses import JSONResponse

from wagate.logger import get_logger
from wagate.sessions.base import ArtifactKind, AuthArtifact
from wagate.sessions.errors import SessionError
from wagate.sessions.models import (
    ArtifactResponse,
    CreateSessionRequest,
    LogoutRequest,
    SendImageRequest,
    SendTextRequest,
    SessionInfo,
    SessionListResponse,
)
from wagate.validation import ValidationError as InputError
from wagate.validation import validate_phone_number

logger = get_logger(__name__)


class _BadRequest(Exception):
    pass


def _get_controller(request: Request):
    """Get SessionLifecycleController from app state."""
    app = getattr(request, "app", None)
    if app is None:
        return None
    return getattr(app.state, "controller", None)


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"success": False, "error": message}, status_code=status_code)


def _describe_validation_error(e: ValidationError) -> str:
    parts = []
    for err in e.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        msg = err.get("msg", "invalid value").removeprefix("Value error, ")
        parts.append(f"{loc}: {msg}" if loc else msg)
    return "; ".join(parts)


async def _parse_body(request: Request, model: type[BaseModel]) -> BaseModel:
    try:
        body = await request.json()
    except Exception:
        raise _BadRequest("Invalid JSON body")
    if not isinstance(body, dict):
        raise _BadRequest("JSON body must be an object")
    try:
        return model.model_validate(body)
    except ValidationError as e:
        raise _BadRequest(_describe_validation_error(e))


def session_endpoint(handler):
    """Map typed session failures to JSON error responses."""

    @functools.wraps(handler)
    async def wrapper(request: Request) -> JSONResponse:
        controller = _get_controller(request)
        if controller is None:
            return _error("Session system not initialized", 503)

        try:
            return await handler(request, controller)
        except _BadRequest as e:
            return _error(str(e), 400)
        except SessionError as e:
            if e.status_code >= 500:
                logger.error(f"{request.method} {request.url.path}: {e.message}")
            return _error(e.message, e.status_code)
        except Exception as e:
            logger.exception(f"Unhandled error in {request.method} {request.url.path}: {e}")
            return _error(f"Internal error: {e}", 500)

    return wrapper


def _artifact_response(token: str, artifact: AuthArtifact) -> dict:
    resp = ArtifactResponse(
        token=token,
        kind=artifact.kind.value,
        qr=artifact.value if artifact.kind is ArtifactKind.QR else None,
        code=artifact.value if artifact.kind is ArtifactKind.PAIRING_CODE else None,
        issued_at=artifact.issued_at.isoformat(),
    )
    return resp.model_dump()


@session_endpoint
async def create_session(request: Request, controller) -> JSONResponse:
    """
    POST /sessions - Initialize a client for a phone number.

    Body: {"number": "+15551234567", "auth_method": "qr" | "pairing_code"}
    """
    body = await _parse_body(request, CreateSessionRequest)
    snapshot = await controller.create_session(body.number, body.auth_method)

    how = "the QR code" if body.auth_method is ArtifactKind.QR else "the pairing code"
    return JSONResponse(
        {
            "success": True,
            "message": f"Session initialized. Please authenticate using {how}.",
            "session": snapshot.to_dict(),
        }
    )


@session_endpoint
async def list_sessions(request: Request, controller) -> JSONResponse:
    """GET /sessions - List all sessions and their status."""
    sessions = [SessionInfo(**s.to_dict()) for s in controller.list_sessions()]
    resp = SessionListResponse(sessions=sessions, count=len(sessions))
    return JSONResponse(resp.model_dump())


@session_endpoint
async def get_session_status(request: Request, controller) -> JSONResponse:
    """GET /sessions/{token} and GET /status/{token}."""
    token = request.path_params.get("token", "")
    snapshot = controller.get_status(token)
    return JSONResponse({"success": True, **snapshot.to_dict()})


@session_endpoint
async def get_session_artifact(request: Request, controller) -> JSONResponse:
    """
    GET /sessions/{token}/qr and GET /qr/{token}.

    Authenticated sessions answer 409. Logged-out or failed sessions are
    re-initialized and the request waits for a fresh code.
    """
    token = request.path_params.get("token", "")
    artifact = await controller.get_artifact(token)
    if artifact is None:
        return _error("QR code not available at the moment.", 404)
    return JSONResponse(_artifact_response(token, artifact))


@session_endpoint
async def request_pairing_code(request: Request, controller) -> JSONResponse:
    """
    POST /sessions/{token}/pairing-code - Wait for a pairing code.

    Missing or stale sessions are (re)started in pairing mode. A session
    that is already pending is reused as is, so a pending QR session
    answers with its QR artifact (``kind: "qr"``) rather than a code.
    """
    token = request.path_params.get("token", "")
    try:
        validate_phone_number(token)
    except InputError as e:
        raise _BadRequest(f"Pairing requires a phone number token: {e}")

    artifact = await controller.request_pairing_code(token)
    return JSONResponse(_artifact_response(token, artifact))


@session_endpoint
async def delete_session(request: Request, controller) -> JSONResponse:
    """DELETE /sessions/{token} - Remove a session and its credentials."""
    token = request.path_params.get("token", "")
    await controller.remove_session(token)
    return JSONResponse({"success": True, "message": "Session removed successfully."})


@session_endpoint
async def logout(request: Request, controller) -> JSONResponse:
    """POST /logout - Body: {"token": "..."}."""
    body = await _parse_body(request, LogoutRequest)
    await controller.logout(body.token)
    return JSONResponse({"success": True, "message": "Logged out successfully."})


@session_endpoint
async def send_text(request: Request, controller) -> JSONResponse:
    """POST /send-text - Body: {"token", "number", "message"}."""
    body = await _parse_body(request, SendTextRequest)
    chat_id = await controller.send_text(body.token, body.number, body.message)
    return JSONResponse(
        {"success": True, "message": "Message sent successfully.", "chat_id": chat_id}
    )


@session_endpoint
async def send_image_url(request: Request, controller) -> JSONResponse:
    """POST /send-image-url - Body: {"token", "number", "imageUrl", "caption"}."""
    body = await _parse_body(request, SendImageRequest)
    chat_id = await controller.send_media(
        body.token, body.number, body.image_url, body.caption
    )
    return JSONResponse(
        {"success": True, "message": "Image sent successfully.", "chat_id": chat_id}
    )
