"""Testing helpers."""

from __future__ import annotations

import asyncio
from collections import deque
from typing import Any, Iterable, Sequence

import msgspec

from .exceptions import TransportError
from .models import ServerParams

OPERATIONS = ("get_flows", "submit_stage", "request_token", "check_liveness")


class TransportCall(msgspec.Struct, frozen=True):
    operation: str
    arguments: dict[str, Any]


class ScriptedTransport:
    """In-memory transport replaying queued responses in order.

    Each operation has its own queue. An item may be a payload, an exception
    to raise, or a future returned by :meth:`defer` that the test resolves
    later to control completion order.
    """

    __test__ = False

    def __init__(self) -> None:
        self.calls: list[TransportCall] = []
        self._scripts: dict[str, deque[Any]] = {operation: deque() for operation in OPERATIONS}

    def queue(self, operation: str, *results: Any) -> "ScriptedTransport":
        script = self._script(operation)
        script.extend(results)
        return self

    def queue_flows(self, *flows: Sequence[str]) -> "ScriptedTransport":
        return self.queue("get_flows", flows_payload(*flows))

    def queue_success(
        self,
        *,
        session_id: str | None = None,
        credential: dict[str, Any] | None = None,
    ) -> "ScriptedTransport":
        payload: dict[str, Any] = {"success": True}
        if session_id is not None:
            payload["sessionId"] = session_id
        if credential is not None:
            payload["credential"] = credential
        return self.queue("submit_stage", payload)

    def queue_rejection(self, http_status: int, errcode: str | None = None) -> "ScriptedTransport":
        return self.queue(
            "submit_stage",
            {"success": False, "error": {"code": errcode, "httpStatus": http_status}},
        )

    def queue_error(
        self,
        operation: str,
        *,
        http_status: int | None = None,
        errcode: str | None = None,
        cors: str | None = None,
    ) -> "ScriptedTransport":
        return self.queue(operation, TransportError(http_status=http_status, errcode=errcode, cors=cors))

    def defer(self, operation: str) -> asyncio.Future[Any]:
        """Queue a response that completes only when the returned future does."""

        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._script(operation).append(future)
        return future

    def calls_for(self, operation: str) -> list[TransportCall]:
        return [call for call in self.calls if call.operation == operation]

    def pending(self, operation: str) -> int:
        return len(self._script(operation))

    async def get_flows(self, server: ServerParams) -> Any:
        return await self._next("get_flows", server=server)

    async def submit_stage(
        self,
        server: ServerParams,
        session_id: str | None,
        stage_type: str,
        stage_input: dict[str, Any],
    ) -> Any:
        return await self._next(
            "submit_stage",
            server=server,
            session_id=session_id,
            stage_type=stage_type,
            stage_input=stage_input,
        )

    async def request_token(
        self,
        server: ServerParams,
        email: str,
        client_secret: str,
        send_attempt: int,
    ) -> Any:
        return await self._next(
            "request_token",
            server=server,
            email=email,
            client_secret=client_secret,
            send_attempt=send_attempt,
        )

    async def check_liveness(self, server: ServerParams) -> Any:
        return await self._next("check_liveness", server=server)

    async def _next(self, operation: str, **arguments: Any) -> Any:
        self.calls.append(TransportCall(operation=operation, arguments=arguments))
        script = self._script(operation)
        if not script:
            raise AssertionError(f"No scripted response left for {operation}")
        item = script.popleft()
        if isinstance(item, asyncio.Future):
            item = await item
        if isinstance(item, BaseException):
            raise item
        return item

    def _script(self, operation: str) -> deque[Any]:
        try:
            return self._scripts[operation]
        except KeyError as exc:
            raise ValueError(f"Unknown transport operation {operation!r}") from exc


def flows_payload(*flows: Iterable[str]) -> dict[str, Any]:
    """Build a discovery payload listing ``flows`` in server order."""

    return {"flows": [{"stages": list(stages)} for stages in flows]}


__all__ = ["OPERATIONS", "ScriptedTransport", "TransportCall", "flows_payload"]
