"""Mastodon REST and streaming API client.

The client is handed an access token that was obtained elsewhere; it never
runs the OAuth flow itself.
"""

import asyncio
import json
from typing import Protocol

import httpx
import structlog

from .mastodon_types import Account, Notification, Status

logger = structlog.get_logger()

STREAM_USER_PATH = "/api/v1/streaming/user"


class MastodonApiError(Exception):
    """Error from Mastodon API."""

    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        self.message = message
        super().__init__(f"Mastodon API Error {status_code}: {message}")


class StreamListener(Protocol):
    """Receiver of user stream events."""

    async def on_status(self, status: Status) -> None:
        ...

    async def on_notification(self, notification: Notification) -> None:
        ...

    async def on_delete(self, status_id: str) -> None:
        ...

    async def on_stream_error(self, message: str) -> None:
        ...


class StreamSubscription:
    """Handle of one open user stream.

    ``cancel()`` is fire-and-forget and may be called at any time, including
    while a listener callback is running. Callbacks already dispatched finish.
    """

    def __init__(self, task: asyncio.Task):
        self._task = task

    @property
    def active(self) -> bool:
        """Whether the stream task is still running."""
        return not self._task.done()

    def cancel(self) -> None:
        """Stop reading the stream."""
        if not self._task.done():
            self._task.cancel()


class ServerSentEventParser:
    """Incremental parser for the ``text/event-stream`` framing."""

    def __init__(self):
        self._event: str | None = None
        self._data: list[str] = []

    def feed_line(self, line: str) -> tuple[str, str] | None:
        """Consume one line; return ``(event, data)`` when an event completes."""
        if not line:
            if self._event is None and not self._data:
                return None
            event = (self._event or "message", "\n".join(self._data))
            self._event = None
            self._data = []
            return event
        if line.startswith(":"):
            # heartbeat
            return None
        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if name == "event":
            self._event = value
        elif name == "data":
            self._data.append(value)
        return None


class MastodonClient:
    """Client for the Mastodon REST and streaming APIs."""

    def __init__(
        self,
        base_url: str,
        access_token: str,
        request_timeout: float = 10.0,
        stream_read_timeout: float = 90.0,
    ):
        """Initialize Mastodon client.

        Args:
            base_url: Instance base URL, e.g. https://mastodon.social
            access_token: OAuth access token of the bridged account
            request_timeout: Timeout for REST calls in seconds
            stream_read_timeout: Max silence on the stream before it is
                considered broken (the server sends heartbeats)
        """
        self.base_url = base_url.rstrip("/")
        self.access_token = access_token
        self.request_timeout = request_timeout
        self.stream_read_timeout = stream_read_timeout
        self._http_client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.request_timeout,
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

    async def _get_json(self, path: str) -> dict:
        client = await self._get_client()
        response = await client.get(path)
        if response.status_code != 200:
            raise MastodonApiError(response.status_code, _error_message(response))
        return response.json()

    # === Point lookups ===

    async def get_status(self, status_id: str) -> Status:
        """Fetch a status by id.

        Raises:
            MastodonApiError: If the status cannot be fetched
        """
        data = await self._get_json(f"/api/v1/statuses/{status_id}")
        return Status.from_dict(data)

    async def get_account(self, account_id: str) -> Account:
        """Fetch an account by id.

        Raises:
            MastodonApiError: If the account cannot be fetched
        """
        data = await self._get_json(f"/api/v1/accounts/{account_id}")
        return Account.from_dict(data)

    async def verify_credentials(self) -> Account:
        """Fetch the account the access token belongs to."""
        data = await self._get_json("/api/v1/accounts/verify_credentials")
        return Account.from_dict(data)

    # === Streaming ===

    async def open_user_stream(self, listener: StreamListener) -> StreamSubscription:
        """Open the user stream and start dispatching events to ``listener``.

        The connection is established before returning, so a refused or
        unauthorised connection raises here instead of in the background.

        Raises:
            MastodonApiError: If the server rejects the stream
            httpx.HTTPError: If the connection cannot be established
        """
        client = await self._get_client()
        request = client.build_request(
            "GET",
            STREAM_USER_PATH,
            headers={"Accept": "text/event-stream"},
            timeout=httpx.Timeout(self.request_timeout, read=self.stream_read_timeout),
        )
        response = await client.send(request, stream=True)
        if response.status_code != 200:
            await response.aread()
            message = _error_message(response)
            await response.aclose()
            raise MastodonApiError(response.status_code, message)

        logger.info("Opened user stream", base_url=self.base_url)
        task = asyncio.create_task(self._pump(response, listener))
        return StreamSubscription(task)

    async def _pump(self, response: httpx.Response, listener: StreamListener) -> None:
        """Read the event stream until it ends, fails, or is cancelled."""
        parser = ServerSentEventParser()
        try:
            async for line in response.aiter_lines():
                parsed = parser.feed_line(line.rstrip("\r"))
                if parsed is None:
                    continue
                await asyncio.shield(self._dispatch(listener, *parsed))
            error = "stream closed by server"
        except asyncio.CancelledError:
            logger.debug("User stream cancelled", base_url=self.base_url)
            raise
        except httpx.HTTPError as e:
            error = str(e) or e.__class__.__name__
        except Exception as e:
            logger.error("User stream crashed", base_url=self.base_url, error=str(e), exc_info=True)
            error = str(e) or e.__class__.__name__
        finally:
            await response.aclose()

        logger.warning("User stream failed", base_url=self.base_url, error=error)
        await listener.on_stream_error(error)

    async def _dispatch(self, listener: StreamListener, event: str, data: str) -> None:
        """Decode one stream event and hand it to the listener."""
        if event == "delete":
            await listener.on_delete(data)
            return
        if event not in ("update", "notification"):
            logger.debug("Ignoring stream event", stream_event=event)
            return

        try:
            payload = json.loads(data)
            entity = Status.from_dict(payload) if event == "update" else Notification.from_dict(payload)
        except (ValueError, TypeError, AttributeError) as e:
            logger.warning("Malformed stream event", stream_event=event, error=str(e))
            return

        if isinstance(entity, Status):
            await listener.on_status(entity)
        else:
            await listener.on_notification(entity)


def _error_message(response: httpx.Response) -> str:
    """Extract the error text of a Mastodon error response."""
    try:
        return response.json().get("error", response.text)
    except (json.JSONDecodeError, AttributeError):
        return response.text
