"""HTTP implementation of the ConsoleBackend protocol.

Thin wrapper around httpx that talks to the lead-console REST endpoints.
Every method returns a ResultEnvelope and never raises, so the engine's
poll loops keep running through network trouble. An HTTP 401 is reported
with the ``"Token expirado"`` sentinel, which halts polling until the
operator logs in again.
"""

import logging
from typing import Any

import httpx

from leaddesk.cli.config import ApiConfig
from leaddesk.sync.envelope import TOKEN_EXPIRED, ErrorKind, ResultEnvelope
from leaddesk.utils.redaction import redact_for_logging, sanitize_error_message

logger = logging.getLogger(__name__)


class HttpBackend:
    """ConsoleBackend implementation that talks to the backend over HTTP."""

    def __init__(
        self,
        config: ApiConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize with endpoint configuration.

        Args:
            config: Endpoint URLs, access token and timeout.
            transport: Optional httpx transport (tests inject a fake one).
        """
        self._config = config
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self):
        """Open httpx async client."""
        headers = {"Content-Type": "application/json"}
        if self._config.access_token:
            headers["Authorization"] = f"Bearer {self._config.access_token}"
        self._client = httpx.AsyncClient(
            timeout=self._config.timeout_seconds,
            headers=headers,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Close httpx async client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        operation: str,
        url: str,
        payload: dict[str, Any] | None = None,
        fallback_error: str = "Error de comunicación con el servidor",
    ) -> ResultEnvelope:
        """Issue one request and fold the outcome into an envelope.

        Args:
            operation: Name used in log lines.
            url: Endpoint URL; empty means the endpoint is not configured.
            payload: JSON body for a POST; None issues a GET.
            fallback_error: Message for transport-level failures.

        Returns:
            Success envelope with the decoded JSON body, or a failure.
        """
        if not url:
            logger.warning("%s endpoint is not configured", operation)
            return ResultEnvelope.fail(f"{operation} endpoint is not configured")
        if self._client is None:
            return ResultEnvelope.fail("HTTP backend is not open")

        if payload is not None:
            logger.debug("%s → POST %s %s", operation, url, redact_for_logging(payload))
        else:
            logger.debug("%s → GET %s", operation, url)

        try:
            if payload is None:
                resp = await self._client.get(url)
            else:
                resp = await self._client.post(url, json=payload)
        except httpx.HTTPError as e:
            logger.error("%s failed: %s", operation, e)
            return ResultEnvelope.fail(fallback_error)

        if resp.status_code == 401:
            logger.warning("%s rejected: access token expired", operation)
            return ResultEnvelope.fail(TOKEN_EXPIRED, ErrorKind.AUTH_EXPIRED)

        if resp.status_code >= 400:
            try:
                body = resp.json()
                detail = body.get("message") if isinstance(body, dict) else None
            except ValueError:
                detail = None
            error = detail or f"HTTP {resp.status_code}: {resp.reason_phrase}"
            logger.error("%s failed: %s", operation, error)
            return ResultEnvelope.fail(sanitize_error_message(str(error)))

        try:
            data = resp.json()
        except ValueError:
            logger.error("%s returned a non-JSON body", operation)
            return ResultEnvelope.fail(fallback_error)
        return ResultEnvelope.ok(data)

    async def fetch_contact_page(
        self, known_ids: list[str] | None = None
    ) -> ResultEnvelope:
        """GET recent leads, or POST known ids for the next page.

        Args:
            known_ids: Conversation ids already held; None for the first page.

        Returns:
            Envelope whose data is the raw JSON (a list of contact records,
            or a ``{"conversations", "has_more"}`` page).
        """
        if known_ids is None:
            return await self._request(
                "fetch_contact_page",
                self._config.recent_leads_url,
                fallback_error="Error al obtener contactos",
            )
        return await self._request(
            "fetch_next_contacts",
            self._config.next_conversations_url,
            {"conversation_ids": list(known_ids)},
            fallback_error="Error al obtener contactos siguientes",
        )

    async def fetch_conversation(self, conversation_id: str) -> ResultEnvelope:
        return await self._request(
            "fetch_conversation",
            self._config.conversation_url,
            {"wa_id": conversation_id},
            fallback_error="Error al obtener la conversación",
        )

    async def fetch_recent_messages_delta(
        self, conversation_id: str, last_message_id: str | None = None
    ) -> ResultEnvelope:
        """POST for messages newer than ``last_message_id`` (all when None)."""
        payload: dict[str, Any] = {"wa_id": conversation_id}
        if last_message_id:
            payload["last_message_id"] = last_message_id
        return await self._request(
            "fetch_recent_messages_delta",
            self._config.recent_messages_url,
            payload,
            fallback_error="Error al obtener mensajes recientes",
        )

    async def mutate_conversation_mode(
        self, conversation_id: str, mode: str
    ) -> ResultEnvelope:
        return await self._request(
            "mutate_conversation_mode",
            self._config.conversation_mode_url,
            {"wa_id": conversation_id, "mode": mode},
            fallback_error="Error al cambiar el modo de conversación",
        )

    async def send_agent_message(
        self, conversation_id: str, text: str
    ) -> ResultEnvelope:
        return await self._request(
            "send_agent_message",
            self._config.send_message_url,
            {"wa_id": conversation_id, "message": text},
            fallback_error="Error al enviar el mensaje",
        )
