"""Wire codec — canonical JSON for frames and envelopes.

Everything that crosses the transport boundary goes through here, so the
two sides of a channel only ever exchange bytes.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError

from ipcbus.core.errors import MalformedEnvelope
from ipcbus.models.envelopes import Envelope, Frame, FrameKind, new_envelope_id

# Fields a raw envelope must carry itself; the model defaults only apply to
# envelopes built in-process.
_WIRE_REQUIRED = ("id", "ts")


def canonical_json_bytes(obj: Any) -> bytes:
    """Produce canonical JSON bytes — deterministic, sorted, compact."""
    return json.dumps(
        obj, sort_keys=True, separators=(",", ":"), ensure_ascii=True
    ).encode("utf-8")


def parse_envelope(
    data: Envelope | Mapping[str, Any], *, assign_id: bool = False
) -> Envelope:
    """Build an ``Envelope`` from a raw mapping.

    A raw mapping must carry ``id`` and ``ts`` itself.  With ``assign_id``
    a missing or empty ``id`` is replaced by a fresh one instead (used by
    ``request``/``ack`` and client stamping, which own the id).

    Raises
    ------
    MalformedEnvelope
        If required fields are missing or have the wrong shape.
    """
    if isinstance(data, Envelope):
        if assign_id and not data.id:
            return data.model_copy(update={"id": new_envelope_id()})
        return data
    if not isinstance(data, Mapping):
        raise MalformedEnvelope(
            f"Envelope must be a mapping, got {type(data).__name__}"
        )
    raw = dict(data)
    if assign_id and not raw.get("id"):
        raw["id"] = new_envelope_id()
    missing = [name for name in _WIRE_REQUIRED if raw.get(name) is None]
    if missing:
        raise MalformedEnvelope(
            f"Envelope missing required field(s): {', '.join(missing)}",
            envelope_id=str(raw.get("id") or ""),
        )
    try:
        return Envelope.model_validate(raw)
    except ValidationError as exc:
        raise MalformedEnvelope(
            f"Envelope validation failed: {exc.error_count()} error(s): "
            + "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
                for err in exc.errors()
            ),
            envelope_id=str(raw.get("id") or ""),
        ) from exc


def encode_frame(
    kind: FrameKind, envelope: Envelope, *, timeout_ms: int | None = None
) -> bytes:
    frame = Frame(kind=kind, envelope=envelope.to_wire(), timeout_ms=timeout_ms)
    return canonical_json_bytes(frame.model_dump(mode="json", exclude_none=True))


def decode_frame(raw: bytes | str) -> Frame:
    """Decode frame bytes.

    Raises
    ------
    MalformedEnvelope
        If the bytes are not a valid frame.
    """
    try:
        return Frame.model_validate_json(raw)
    except ValidationError as exc:
        raise MalformedEnvelope(f"Invalid frame: {exc.error_count()} error(s)") from exc


def encode_envelope(envelope: Envelope) -> bytes:
    return canonical_json_bytes(envelope.to_wire())


def decode_envelope(raw: bytes | str) -> Envelope:
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise MalformedEnvelope(f"Invalid JSON: {exc}") from exc
    return parse_envelope(data)
