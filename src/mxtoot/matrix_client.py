"""Matrix Client-Server API client used by the bridge bots.

Requests are made with the application-service token, acting as the bot's
Matrix user through the ``user_id`` query parameter.
"""

import secrets
from typing import Any
from urllib.parse import quote

import httpx
import structlog

logger = structlog.get_logger()

CLIENT_API_PREFIX = "/_matrix/client/v3"
HTML_FORMAT = "org.matrix.custom.html"


class MatrixApiError(Exception):
    """Error from Matrix homeserver."""

    def __init__(self, status_code: int, errcode: str, message: str):
        self.status_code = status_code
        self.errcode = errcode
        self.message = message
        super().__init__(f"Matrix API Error {status_code} {errcode}: {message}")


class MatrixClient:
    """Client for the Matrix Client-Server API."""

    def __init__(
        self,
        homeserver_url: str,
        access_token: str,
        user_id: str | None = None,
        timeout: float = 15.0,
    ):
        """Initialize Matrix client.

        Args:
            homeserver_url: Homeserver base URL
            access_token: Application-service (or user) access token
            user_id: User to act as when using an application-service token
            timeout: Request timeout in seconds
        """
        self.homeserver_url = homeserver_url.rstrip("/")
        self.access_token = access_token
        self.user_id = user_id
        self.timeout = timeout
        self._http_client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(
                base_url=self.homeserver_url,
                timeout=self.timeout,
                headers={
                    "Authorization": f"Bearer {self.access_token}",
                    "User-Agent": "MxTootBridge/1.0",
                },
            )
        return self._http_client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Make an API request.

        Raises:
            MatrixApiError: On a non-2xx response
        """
        client = await self._get_client()
        params = {"user_id": self.user_id} if self.user_id else None
        response = await client.request(
            method,
            f"{CLIENT_API_PREFIX}{path}",
            params=params,
            json=body,
        )
        if response.status_code >= 300:
            try:
                error = response.json()
            except ValueError:
                error = {}
            raise MatrixApiError(
                response.status_code,
                error.get("errcode", "M_UNKNOWN"),
                error.get("error", response.text),
            )
        return response.json()

    async def joined_rooms(self) -> list[str]:
        """List the rooms the user has joined."""
        data = await self._request("GET", "/joined_rooms")
        return data.get("joined_rooms", [])

    async def join_room(self, room_id: str) -> str:
        """Join a room by id or alias.

        Returns:
            The joined room id
        """
        data = await self._request("POST", f"/join/{quote(room_id, safe='')}", body={})
        logger.info("Joined room", room_id=room_id, user_id=self.user_id)
        return data.get("room_id", room_id)

    async def send_message(self, room_id: str, content: dict[str, Any]) -> str:
        """Send an ``m.room.message`` event.

        Returns:
            Event id of the sent message
        """
        txn_id = secrets.token_hex(16)
        data = await self._request(
            "PUT",
            f"/rooms/{quote(room_id, safe='')}/send/m.room.message/{txn_id}",
            body=content,
        )
        return data.get("event_id", "")

    async def send_notice(self, room_id: str, text: str) -> str:
        """Send a plain-text notice."""
        return await self.send_message(room_id, {"msgtype": "m.notice", "body": text})

    async def send_formatted_notice(self, room_id: str, text: str, formatted: str) -> str:
        """Send a notice with a plain-text body and an HTML formatted body."""
        return await self.send_message(
            room_id,
            {
                "msgtype": "m.notice",
                "body": text,
                "format": HTML_FORMAT,
                "formatted_body": formatted,
            },
        )
