"""Transport abstraction consumed by discovery and submission."""

from __future__ import annotations

from typing import Any, Mapping, Protocol, runtime_checkable

from .models import ServerParams


@runtime_checkable
class AuthTransport(Protocol):
    """JSON-over-HTTP in practice; failures raise :class:`~authflow.exceptions.TransportError`.

    Each method may return an already decoded mapping or the raw JSON body.
    """

    async def get_flows(self, server: ServerParams) -> Any:
        """Return ``{"flows": [{"stages": [...]}, ...]}``."""
        ...

    async def submit_stage(
        self,
        server: ServerParams,
        session_id: str | None,
        stage_type: str,
        stage_input: Mapping[str, Any],
    ) -> Any:
        """Return ``{"success", "sessionId", "credential"?, "error"?}``."""
        ...

    async def request_token(
        self,
        server: ServerParams,
        email: str,
        client_secret: str,
        send_attempt: int,
    ) -> Any:
        """Ask the identity server to email a verification token; return ``{"sid"}``."""
        ...

    async def check_liveness(self, server: ServerParams) -> None:
        ...


__all__ = ["AuthTransport"]
