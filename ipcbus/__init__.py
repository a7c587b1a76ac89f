"""ipcbus: policy-routed message bus between isolated client contexts.

One privileged broker owns the routing policy, the request correlation
table and the audit trail.  Client contexts reach it only through a
duplex transport:
  - Typed topic subscriptions with ``on`` / ``once`` / ``off``
  - One-way ``emit``, acknowledged ``ack`` and correlated ``request``
  - Declarative domain / source / target policy with hot reload
  - Bounded pending-request table with timeouts and a sweeper
  - Daily JSONL audit log for sensitive domains
"""

__version__ = "0.2.0"
__description__ = "Policy-routed message bus between isolated client contexts"

from ipcbus.bridge.transport import LocalChannel, open_channel
from ipcbus.client.bus_client import BusClient
from ipcbus.core.broker import Broker
from ipcbus.models.envelopes import AckResult, BusResponse, Envelope
from ipcbus.routing.policy_router import PolicyRouter

__all__ = [
    "Broker",
    "BusClient",
    "Envelope",
    "AckResult",
    "BusResponse",
    "PolicyRouter",
    "LocalChannel",
    "open_channel",
    "__version__",
]
