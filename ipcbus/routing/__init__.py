"""ipcbus routing — declarative validation of which event types may flow
between which domains, sources and targets.

The ``PolicyRouter`` holds the active ``RoutingPolicy`` and is consulted by
the broker for every envelope that is not a matched response.  Policies can
be hot-reloaded from a JSON document without restarting the broker.
"""

from ipcbus.routing.policy_router import PolicyRouter, dump_policy

__all__ = ["PolicyRouter", "dump_policy"]
