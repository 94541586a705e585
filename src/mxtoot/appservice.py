"""Matrix application-service HTTP endpoint.

The homeserver pushes transactions of room events here and retries until a
transaction is acknowledged. Every transaction goes through the deduper, so
a retried push is acknowledged without being processed twice.
"""

import json
import secrets

import structlog
from aiohttp import web
from sqlalchemy.exc import SQLAlchemyError

from .commands import CommandDispatcher
from .dedup import TransactionDeduper
from .registry import BotRegistry

logger = structlog.get_logger()


def matrix_error(status: int, errcode: str, error: str) -> web.Response:
    """Matrix-style JSON error response."""
    return web.json_response({"errcode": errcode, "error": error}, status=status)


class AppServiceResource:
    """Handlers of the application-service API."""

    def __init__(
        self,
        registry: BotRegistry,
        deduper: TransactionDeduper,
        dispatcher: CommandDispatcher,
        hs_token: str,
    ):
        """Initialize resource.

        Args:
            registry: Bot registry
            deduper: Transaction deduplication
            dispatcher: Handler of accepted events
            hs_token: Token the homeserver must present
        """
        self.registry = registry
        self.deduper = deduper
        self.dispatcher = dispatcher
        self.hs_token = hs_token

    def _check_token(self, request: web.Request) -> web.Response | None:
        """Return an error response unless the request carries the hs token."""
        token = None
        auth = request.headers.get("Authorization", "")
        if auth.startswith("Bearer "):
            token = auth[len("Bearer "):]
        else:
            token = request.query.get("access_token")

        if not token:
            return matrix_error(401, "M_UNAUTHORIZED", "Missing access token")
        if not secrets.compare_digest(token, self.hs_token):
            return matrix_error(403, "M_FORBIDDEN", "Invalid access token")
        return None

    async def handle_transaction(self, request: web.Request) -> web.Response:
        """Accept a pushed transaction.

        PUT /_matrix/app/v1/transactions/{txn_id}
        """
        denied = self._check_token(request)
        if denied is not None:
            return denied

        txn_id = request.match_info["txn_id"]
        try:
            body = await request.json()
        except json.JSONDecodeError:
            return matrix_error(400, "M_NOT_JSON", "Invalid JSON")

        events = body.get("events", []) if isinstance(body, dict) else []
        if not isinstance(events, list):
            events = []

        try:
            processed = await self.deduper.process_once(
                txn_id,
                lambda: self.dispatcher.dispatch_all(events),
            )
        except SQLAlchemyError as e:
            logger.error("Transaction store unavailable", txn_id=txn_id, error=str(e))
            return matrix_error(500, "M_UNKNOWN", "Transaction store unavailable")

        logger.info(
            "Received transaction",
            txn_id=txn_id,
            events=len(events),
            duplicate=not processed,
        )
        return web.json_response({})

    async def handle_user_query(self, request: web.Request) -> web.Response:
        """Report whether a user id belongs to a bot.

        GET /_matrix/app/v1/users/{user_id}
        """
        denied = self._check_token(request)
        if denied is not None:
            return denied

        if self.registry.is_bot_user(request.match_info["user_id"]):
            return web.json_response({})
        return matrix_error(404, "M_NOT_FOUND", "No such user")

    async def handle_room_query(self, request: web.Request) -> web.Response:
        """The bridge provides no room aliases.

        GET /_matrix/app/v1/rooms/{alias}
        """
        denied = self._check_token(request)
        if denied is not None:
            return denied
        return matrix_error(404, "M_NOT_FOUND", "No such room")

    async def handle_health(self, request: web.Request) -> web.Response:
        """Health check endpoint.

        GET /health
        """
        bots = {
            account_id: bot.ingestor.state.value
            for account_id, bot in self.registry.bots.items()
        }
        return web.json_response({
            "status": "ok",
            "bots": bots,
            "misconfigured": sorted(self.registry.failed),
        })

    def create_app(self) -> web.Application:
        """Create aiohttp web application."""
        app = web.Application()

        for prefix in ("/_matrix/app/v1", ""):
            app.router.add_put(f"{prefix}/transactions/{{txn_id}}", self.handle_transaction)
            app.router.add_get(f"{prefix}/users/{{user_id}}", self.handle_user_query)
            app.router.add_get(f"{prefix}/rooms/{{alias}}", self.handle_room_query)
        app.router.add_get("/health", self.handle_health)

        return app
