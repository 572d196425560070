"""Flow discovery against a remote authentication endpoint."""

from __future__ import annotations

import logging
from urllib.parse import urlparse

from .exceptions import DiscoveryCause, DiscoveryError, TransportError
from .models import FlowDescriptor, FlowPayload, FlowSet, FlowsPayload, ServerParams
from .observability import Observability
from .serialization import PayloadError, decode_as
from .transport import AuthTransport

logger = logging.getLogger(__name__)


def _valid_base_url(url: str) -> bool:
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def _normalize(flow: FlowPayload) -> FlowDescriptor:
    if flow.stages is not None:
        return FlowDescriptor(stages=tuple(flow.stages))
    if flow.type is not None:
        return FlowDescriptor(stages=(flow.type,))
    return FlowDescriptor(stages=())


class FlowDiscoverer:
    """Fetch the flows a server offers, tagging each result with a generation.

    The discoverer never retries. Callers record the generation they acted on
    with :meth:`mark_applied` and use :meth:`is_stale` to drop late results.
    """

    def __init__(self, transport: AuthTransport, *, observability: Observability | None = None) -> None:
        self.transport = transport
        self.observability = observability or Observability()
        self._generation = 0
        self._applied = 0

    @property
    def generation(self) -> int:
        """Generation of the most recently issued discovery."""

        return self._generation

    @property
    def applied_generation(self) -> int:
        return self._applied

    def is_stale(self, generation: int) -> bool:
        return generation <= self._applied

    def mark_applied(self, generation: int) -> None:
        if generation > self._applied:
            self._applied = generation

    async def discover(self, server: ServerParams) -> FlowSet:
        self._generation += 1
        generation = self._generation
        context = self.observability.on_discovery_start(server, generation)
        try:
            flow_set = await self._fetch(server, generation)
        except Exception as exc:
            self.observability.on_discovery_error(context, exc)
            raise
        self.observability.on_discovery_success(context, flow_set)
        return flow_set

    async def _fetch(self, server: ServerParams, generation: int) -> FlowSet:
        if not _valid_base_url(server.base_url):
            raise DiscoveryError(DiscoveryCause.INVALID_BASE_URL, generation=generation, detail=server.base_url)
        try:
            raw = await self.transport.get_flows(server)
        except TransportError as exc:
            cause = DiscoveryCause.UNREACHABLE if exc.unreachable else DiscoveryCause.INVALID_RESPONSE
            raise DiscoveryError(
                cause,
                generation=generation,
                http_status=exc.http_status,
                errcode=exc.errcode,
                detail=str(exc),
            ) from exc
        try:
            payload = decode_as(raw, FlowsPayload)
        except PayloadError as exc:
            raise DiscoveryError(DiscoveryCause.INVALID_RESPONSE, generation=generation, detail=str(exc)) from exc
        flows = tuple(_normalize(flow) for flow in payload.flows)
        logger.debug("Discovered %d flow(s) on %s (generation %d)", len(flows), server.base_url, generation)
        return FlowSet(generation=generation, flows=flows, server=server)


__all__ = ["FlowDiscoverer"]
