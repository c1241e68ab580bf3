"""
HTTP bridge driver.

The platform protocol runs in a separate automation sidecar (typically a
headless browser process). This driver asks the sidecar to start, message
and stop a client, and the sidecar reports lifecycle events back to the
gateway on ``POST /bridge/events``, which feeds them to ``handle_event``.

Sidecar API:
    POST   /clients                    {token, data_path, auth_method, phone_number, callback_url}
    POST   /clients/{token}/messages   {chat_id, text} | {chat_id, caption, media: {...}}
    DELETE /clients/{token}

Events (sidecar → gateway):
    {"token": "...", "type": "qr", "data": {"qr": "..."}}
    {"token": "...", "type": "code", "data": {"code": "ABCD-EFGH"}}
    {"token": "...", "type": "ready"}
    {"token": "...", "type": "auth_failure", "data": {"message": "..."}}
    {"token": "...", "type": "disconnected", "data": {"reason": "LOGOUT"}}
"""

from pathlib import Path
from typing import Any, Optional

import httpx

from wagate.logger import get_logger
from wagate.sessions.base import ArtifactKind, MediaPayload, MessagingClient

logger = get_logger(__name__)

DEFAULT_BRIDGE_TIMEOUT = 30.0


class BridgeError(Exception):
    """The sidecar rejected a request or could not be reached."""


class BridgeClient(MessagingClient):
    """A messaging client hosted by the automation sidecar."""

    def __init__(
        self,
        token: str,
        credentials_dir: Path,
        base_url: str = "http://127.0.0.1:3100",
        callback_url: Optional[str] = None,
        timeout: float = DEFAULT_BRIDGE_TIMEOUT,
        http: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(token, credentials_dir)
        self.base_url = base_url.rstrip("/")
        self.callback_url = callback_url
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)

    @classmethod
    def from_config(cls, token: str, credentials_dir: Path, config: Any):
        return cls(
            token,
            credentials_dir,
            base_url=config.bridge_url,
            callback_url=config.bridge_callback_url,
            timeout=config.bridge_timeout,
        )

    async def _request(
        self, method: str, path: str, json: Optional[dict] = None
    ) -> dict[str, Any]:
        try:
            response = await self._http.request(method, path, json=json)
        except httpx.HTTPError as e:
            raise BridgeError(f"{method} {path} failed: {e}") from e

        if response.status_code >= 400:
            try:
                detail = response.json().get("error", response.text)
            except ValueError:
                detail = response.text
            raise BridgeError(f"{method} {path} -> {response.status_code}: {detail}")

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            return {}

    async def start(
        self,
        auth_method: ArtifactKind = ArtifactKind.QR,
        phone_number: Optional[str] = None,
    ) -> None:
        logger.info(f"Starting bridge client {self.token} ({auth_method.value})")
        await self._request(
            "POST",
            "/clients",
            json={
                "token": self.token,
                "data_path": str(self.credentials_dir),
                "auth_method": auth_method.value,
                "phone_number": phone_number,
                "callback_url": self.callback_url,
            },
        )

    async def send_text(self, chat_id: str, text: str) -> None:
        await self._request(
            "POST",
            f"/clients/{self.token}/messages",
            json={"chat_id": chat_id, "text": text},
        )

    async def send_media(
        self, chat_id: str, media: MediaPayload, caption: str = ""
    ) -> None:
        await self._request(
            "POST",
            f"/clients/{self.token}/messages",
            json={
                "chat_id": chat_id,
                "caption": caption,
                "media": {
                    "mimetype": media.mimetype,
                    "data": media.data,
                    "filename": media.filename,
                },
            },
        )

    async def shutdown(self) -> None:
        try:
            await self._request("DELETE", f"/clients/{self.token}")
        finally:
            if self._owns_http:
                await self._http.aclose()

    def handle_event(self, event_type: str, data: Optional[dict[str, Any]] = None) -> bool:
        """
        Translate a sidecar event into observer callbacks.

        Returns:
            False for event types the driver does not understand.
        """
        data = data or {}

        if event_type in ("qr", "code"):
            value = data.get(event_type)
            if not value:
                logger.warning(f"Bridge '{event_type}' event for {self.token} has no value")
                return False
            kind = ArtifactKind.QR if event_type == "qr" else ArtifactKind.PAIRING_CODE
            self._emit_artifact(kind, str(value))
        elif event_type == "ready":
            self._emit_authenticated()
        elif event_type == "authenticated":
            # Credentials accepted; the session is usable only after "ready"
            logger.debug(f"Bridge client {self.token} accepted credentials")
        elif event_type == "auth_failure":
            self._emit_auth_failed(str(data.get("message") or data.get("reason") or ""))
        elif event_type == "disconnected":
            self._emit_disconnected(str(data.get("reason") or ""))
        else:
            logger.warning(f"Unknown bridge event '{event_type}' for {self.token}")
            return False

        return True
