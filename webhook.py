"""
Inbound webhook server for backend events.

The backend calls these endpoints right after something happens on its side:

- POST /webhook/new-user  {telegram_id, first_name}: send the welcome message.
  A failed send is reported back as 500.
- POST /webhook/referral  {referrer_id, referred_name}: tell the referrer a
  friend joined. The shards were already credited by the backend, so a failed
  send is only logged and the endpoint still answers 200.
- GET /health: plain "OK".

Requests must carry X-Bot-Secret matching the configured secret; when no
secret is configured every request is accepted. Each request makes exactly
one send attempt, synchronously, on its own server thread.
"""

from __future__ import annotations

import hmac
import json
import logging
import threading
from dataclasses import dataclass, field
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from telegram.constants import ParseMode

from messages import main_menu, referral_message, welcome_message
from server_client import SECRET_HEADER
from telegram_bot import TelegramBot


logger = logging.getLogger(__name__)


@dataclass
class WebhookRequest:
    method: str
    path: str
    headers: Mapping[str, str] = field(default_factory=dict)
    body: bytes = b""
    remote_addr: str = ""


@dataclass
class WebhookResponse:
    status: int
    body: bytes = b""
    content_type: str = "text/plain; charset=utf-8"

    @classmethod
    def json(cls, status: int, payload: Dict[str, Any]) -> "WebhookResponse":
        return cls(status, json.dumps(payload).encode("utf-8"), "application/json")

    @classmethod
    def text(cls, status: int, text: str) -> "WebhookResponse":
        return cls(status, text.encode("utf-8"))


class BadRequest(Exception):
    pass


Route = Callable[[WebhookRequest], WebhookResponse]


class WebhookServer:
    """Receive backend push notifications and relay them to Telegram."""

    def __init__(
        self,
        bot: TelegramBot,
        bot_secret: str,
        mini_app_url: str,
        port: int,
        host: str = "0.0.0.0",
    ) -> None:
        self.bot = bot
        self.bot_secret = bot_secret
        self.mini_app_url = mini_app_url
        self.host = host
        self.port = port
        self.routes: Dict[Tuple[str, str], Route] = {
            ("POST", "/webhook/new-user"): self.handle_new_user,
            ("POST", "/webhook/referral"): self.handle_referral,
            ("GET", "/health"): self.handle_health,
        }
        self._httpd: Optional[ThreadingHTTPServer] = None
        self._thread: Optional[threading.Thread] = None

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    def dispatch(self, request: WebhookRequest) -> WebhookResponse:
        path = request.path.split("?", 1)[0]
        route = self.routes.get((request.method, path))
        if route is not None:
            return route(request)
        if any(known_path == path for _, known_path in self.routes):
            return WebhookResponse.text(405, "Method Not Allowed")
        return WebhookResponse.text(404, "Not Found")

    def authenticate(self, request: WebhookRequest) -> bool:
        if not self.bot_secret:
            return True
        supplied = request.headers.get(SECRET_HEADER) or ""
        return hmac.compare_digest(supplied.encode("utf-8"), self.bot_secret.encode("utf-8"))

    @staticmethod
    def _parse_body(request: WebhookRequest) -> Dict[str, Any]:
        try:
            data = json.loads(request.body or b"")
        except ValueError as e:
            raise BadRequest(f"Invalid request body: {e}")
        if not isinstance(data, dict):
            raise BadRequest("Invalid request body: expected a JSON object")
        return data

    @staticmethod
    def _required_id(data: Dict[str, Any], key: str) -> int:
        value = data.get(key)
        if isinstance(value, bool):
            value = None
        try:
            parsed = int(value or 0)
        except (TypeError, ValueError):
            parsed = 0
        if parsed == 0:
            raise BadRequest(f"{key} is required")
        return parsed

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def handle_health(self, request: WebhookRequest) -> WebhookResponse:
        return WebhookResponse.text(200, "OK")

    def handle_new_user(self, request: WebhookRequest) -> WebhookResponse:
        if not self.authenticate(request):
            logger.warning(f"[WEBHOOK] Unauthorized new user notification from {request.remote_addr}")
            return WebhookResponse.text(401, "Unauthorized")

        try:
            data = self._parse_body(request)
            telegram_id = self._required_id(data, "telegram_id")
        except BadRequest as e:
            logger.warning(f"[WEBHOOK] Rejected new user notification: {e}")
            return WebhookResponse.text(400, str(e))

        first_name = str(data.get("first_name") or "")
        logger.info(f"[WEBHOOK] Received new user notification: TG ID {telegram_id} ({first_name})")

        try:
            self.bot.send_message(telegram_id, welcome_message(first_name), reply_markup=main_menu(self.mini_app_url))
        except Exception as e:
            logger.error(f"[WEBHOOK] Failed to send welcome message to user {telegram_id}: {e}")
            return WebhookResponse.json(500, {"success": False, "message": f"Failed to send message: {e}"})

        logger.info(f"[WEBHOOK] Successfully sent welcome message to user {telegram_id}")
        return WebhookResponse.json(200, {"success": True, "message": "Welcome message sent"})

    def handle_referral(self, request: WebhookRequest) -> WebhookResponse:
        if not self.authenticate(request):
            logger.warning(f"[WEBHOOK] Unauthorized referral notification from {request.remote_addr}")
            return WebhookResponse.text(401, "Unauthorized")

        try:
            data = self._parse_body(request)
            referrer_id = self._required_id(data, "referrer_id")
        except BadRequest as e:
            logger.warning(f"[WEBHOOK] Rejected referral notification: {e}")
            return WebhookResponse.text(400, str(e))

        referred_name = str(data.get("referred_name") or "")
        logger.info(f"[WEBHOOK] Received referral notification: Referrer {referrer_id}, Referred {referred_name}")

        try:
            self.bot.send_message(referrer_id, referral_message(referred_name), parse_mode=ParseMode.MARKDOWN)
        except Exception as e:
            # Shards are already credited server-side; the notice is best effort.
            logger.error(f"[WEBHOOK] Failed to send referral message to user {referrer_id}: {e}")
        else:
            logger.info(f"[WEBHOOK] Successfully sent referral message to user {referrer_id}")

        return WebhookResponse.json(200, {"success": True, "message": "Referral notification sent"})

    # ------------------------------------------------------------------
    # HTTP server
    # ------------------------------------------------------------------

    def _handler_class(self) -> type:
        server = self

        class _Handler(BaseHTTPRequestHandler):
            def _serve(self) -> None:
                try:
                    length = int(self.headers.get("Content-Length") or 0)
                except ValueError:
                    length = -1
                if length < 0:
                    # The body cannot be framed, so the connection is not reused.
                    self.close_connection = True
                    self._respond(WebhookResponse.text(400, "Invalid Content-Length"))
                    return

                body = self.rfile.read(length) if length > 0 else b""
                request = WebhookRequest(
                    method=self.command,
                    path=self.path,
                    headers=self.headers,
                    body=body,
                    remote_addr=self.client_address[0],
                )
                try:
                    response = server.dispatch(request)
                except Exception as e:
                    logger.error(f"[WEBHOOK] Unhandled error on {self.command} {self.path}: {e}")
                    response = WebhookResponse.text(500, "Internal Server Error")
                self._respond(response)

            def _respond(self, response: WebhookResponse) -> None:
                self.send_response(response.status)
                self.send_header("Content-Type", response.content_type)
                self.send_header("Content-Length", str(len(response.body)))
                self.end_headers()
                self.wfile.write(response.body)


            def do_GET(self):  # noqa: N802 - stdlib API
                self._serve()

            def do_POST(self):  # noqa: N802 - stdlib API
                self._serve()

            def log_message(self, format, *args):  # noqa: A003 - stdlib API
                logger.debug("[WEBHOOK] %s - %s", self.client_address[0], format % args)

        return _Handler

    @property
    def server_port(self) -> int:
        """Port actually bound; differs from `port` when started with port 0."""
        if self._httpd is None:
            return self.port
        return self._httpd.server_address[1]

    def start(self) -> None:
        self._httpd = ThreadingHTTPServer((self.host, self.port), self._handler_class())
        self._httpd.daemon_threads = True
        self._thread = threading.Thread(target=self._httpd.serve_forever, name="webhook-server", daemon=True)
        self._thread.start()
        logger.info(f"🌐 Webhook server started on {self.host}:{self.server_port}")

    def stop(self) -> None:
        if self._httpd is None:
            return
        self._httpd.shutdown()
        self._httpd.server_close()
        self._httpd = None
        self._thread = None
