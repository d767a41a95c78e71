"""Async HTTP client for the chat API.

Wraps the REST endpoints and drives a StreamConsumer over the streaming
send endpoint. After every send the transcript is re-read from the
server, which is the authority on what was persisted.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from chatrelay.errors import ChatClientError, StreamCancelled
from chatrelay.schemas.chat import Character, Conversation, ConversationDetail, Message
from chatrelay.schemas.streaming import StreamOutcome
from chatrelay.streaming.cancellation import CancellationController
from chatrelay.streaming.consumer import DeltaListener, StreamConsumer
from chatrelay.streaming.frames import MEDIA_TYPE

logger = logging.getLogger(__name__)

DEFAULT_URL = "http://127.0.0.1:8000"


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return response.reason_phrase


class ChatClient:
    """Client for one chatrelay server.

    Usage::

        async with ChatClient("http://127.0.0.1:8000") as client:
            outcome = await client.send_message(1, "Hello", on_delta=print)
    """

    def __init__(
        self,
        base_url: str = DEFAULT_URL,
        *,
        http: httpx.AsyncClient | None = None,
        timeout: float = 120.0,
    ) -> None:
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def __aenter__(self) -> ChatClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        response = await self._http.request(method, path, **kwargs)
        if response.is_error:
            raise ChatClientError(response.status_code, _error_message(response))
        return response.json()

    # ── Characters and conversations ─────────────────────────────

    async def list_characters(self) -> list[Character]:
        data = await self._request("GET", "/api/characters")
        return [Character.model_validate(item) for item in data]

    async def create_conversation(self, character_id: int) -> Conversation:
        data = await self._request(
            "POST", "/api/conversations", json={"characterId": character_id},
        )
        return Conversation.model_validate(data)

    async def get_conversation(self, conversation_id: int) -> ConversationDetail:
        data = await self._request("GET", f"/api/conversations/{conversation_id}")
        return ConversationDetail.model_validate(data)

    async def list_messages(self, conversation_id: int) -> list[Message]:
        data = await self._request("GET", f"/api/conversations/{conversation_id}/messages")
        return [Message.model_validate(item) for item in data]

    # ── Streaming send ───────────────────────────────────────────

    async def send_message(
        self,
        conversation_id: int,
        content: str,
        *,
        on_delta: DeltaListener | None = None,
        cancel: CancellationController | None = None,
    ) -> StreamOutcome:
        """Send ``content`` and consume the streamed reply.

        ``on_delta`` receives each fragment as it arrives. Firing
        ``cancel`` closes the connection at any point, including while
        waiting for the first frame, which aborts the server-side session.

        Raises:
            ChatClientError: If the server rejects the send before streaming.
        """
        cancel = cancel or CancellationController()
        consumer = StreamConsumer(
            conversation_id,
            on_delta=on_delta,
            reconcile=lambda: self.list_messages(conversation_id),
            cancel=cancel,
        )
        request = self._http.build_request(
            "POST",
            f"/api/conversations/{conversation_id}/messages",
            json={"content": content},
            headers={"Accept": MEDIA_TYPE},
        )

        # The server sends headers only once the first frame is ready
        sending = asyncio.ensure_future(self._http.send(request, stream=True))
        try:
            response = await cancel.race(sending)
        except StreamCancelled:
            if sending.done() and not sending.cancelled() and sending.exception() is None:
                await sending.result().aclose()
            logger.info(
                "Send to conversation %d cancelled before the reply started",
                conversation_id,
            )
            return await consumer.finish()

        try:
            if response.status_code != httpx.codes.OK:
                await response.aread()
                raise ChatClientError(response.status_code, _error_message(response))
            return await consumer.consume(response.aiter_bytes())
        finally:
            await response.aclose()
