"""FrameGateway — broker-side endpoint of the transport.

Decodes incoming frame bytes and routes them by ``FrameKind``:

* ``one_way``  -> ``Broker.publish``   (ordinary event, never correlated)
* ``response`` -> ``Broker.correlate`` (settles a pending request)
* ``ack``      -> ``Broker.ack``       -> ``AckResult`` bytes
* ``request``  -> ``Broker.request``   -> ``BusResponse`` bytes

One-way and response frames get no reply; their validation failures are
logged because there is no caller to return them to.
"""

from __future__ import annotations

import logging

from ipcbus.core.broker import Broker
from ipcbus.core.codec import canonical_json_bytes, decode_frame
from ipcbus.core.errors import EnvelopeValidationError
from ipcbus.models.envelopes import FrameKind

logger = logging.getLogger(__name__)


class FrameGateway:
    """Translates transport frames into broker calls."""

    def __init__(self, broker: Broker) -> None:
        self._broker = broker

    @property
    def broker(self) -> Broker:
        return self._broker

    async def handle(self, raw: bytes) -> bytes | None:
        """Process one frame; return reply bytes for ack/request frames."""
        try:
            frame = decode_frame(raw)
        except EnvelopeValidationError:
            logger.warning("Dropping undecodable frame (%d bytes)", len(raw))
            return None

        if frame.kind in (FrameKind.ONE_WAY, FrameKind.RESPONSE):
            try:
                if frame.kind is FrameKind.RESPONSE:
                    self._broker.correlate(frame.envelope)
                else:
                    self._broker.publish(frame.envelope)
            except EnvelopeValidationError as exc:
                logger.warning(
                    "Rejected %s envelope %s: %s (%s)",
                    frame.kind.value,
                    frame.envelope.get("id", "?"),
                    exc,
                    exc.code.value,
                )
            return None

        if frame.kind is FrameKind.ACK:
            result = self._broker.ack(frame.envelope)
            return canonical_json_bytes(result.model_dump(mode="json", exclude_none=True))

        response = await self._broker.request(frame.envelope, frame.timeout_ms)
        return canonical_json_bytes(response.model_dump(mode="json", exclude_none=True))

