"""Typed decoding of transport payloads."""

from __future__ import annotations

from typing import Any, Protocol, TypeVar, cast

import msgspec

T = TypeVar("T")


class _JSONModule(Protocol):
    def decode(self, data: bytes | str, *, type: Any = ...) -> Any: ...


_json = cast(_JSONModule, getattr(msgspec, "json"))

PayloadError = (msgspec.ValidationError, msgspec.DecodeError)


def decode_as(data: Any, target: type[T]) -> T:
    """Decode a wire payload into ``target``.

    Transports may hand back raw JSON (``bytes``/``str``) or an already
    decoded mapping; both are validated against the same schema. Failures
    raise one of :data:`PayloadError`.
    """

    if isinstance(data, (bytes, bytearray, memoryview)):
        return cast(T, _json.decode(bytes(data), type=target))
    if isinstance(data, str):
        return cast(T, _json.decode(data, type=target))
    return msgspec.convert(data, type=target)


__all__ = ["PayloadError", "decode_as"]
