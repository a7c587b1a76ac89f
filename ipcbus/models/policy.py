"""Declarative routing policy document.

A policy is pure data so it can be swapped at runtime.  Two tables:

* ``domains`` -- domain name -> the event types that belong to it.
* ``types``   -- event type -> optional source / target allow-lists.

A missing (or ``null``) allow-list leaves that dimension unrestricted.
Entries are exact identities or shell-style globs (``"partner:*"``).

JSON form::

    {
      "domains": {"risk": {"types": ["RISK_CHECK"]}},
      "types":   {"RISK_CHECK": {"sources": ["workbench", "partner:*"],
                                 "targets": ["main"]}}
    }
"""

from __future__ import annotations

from fnmatch import fnmatchcase

from pydantic import BaseModel, ConfigDict


class DomainRule(BaseModel):
    """The event types allowed under one domain."""

    model_config = ConfigDict(frozen=True)

    types: list[str] = []


class TypeRule(BaseModel):
    """Source / target restrictions for one event type."""

    model_config = ConfigDict(frozen=True)

    sources: list[str] | None = None
    targets: list[str] | None = None

    def allows_source(self, source: str) -> bool:
        return self.sources is None or _matches(source, self.sources)

    def allows_target(self, target: str) -> bool:
        return self.targets is None or _matches(target, self.targets)


def _matches(identity: str, patterns: list[str]) -> bool:
    return any(identity == p or fnmatchcase(identity, p) for p in patterns)


class RoutingPolicy(BaseModel):
    """Domain membership plus per-type identity rules."""

    model_config = ConfigDict(frozen=True)

    domains: dict[str, DomainRule] = {}
    types: dict[str, TypeRule] = {}

    def known_types(self) -> frozenset[str]:
        """The closed set of event types any domain admits."""
        return frozenset(t for rule in self.domains.values() for t in rule.types)

    def domains_for(self, event_type: str) -> list[str]:
        """Domains that list *event_type*, in declaration order."""
        return [name for name, rule in self.domains.items() if event_type in rule.types]

    def rule_for(self, event_type: str) -> TypeRule:
        return self.types.get(event_type) or TypeRule()


DEFAULT_POLICY = RoutingPolicy(
    domains={
        "call": DomainRule(types=["CALL_START"]),
        "cti": DomainRule(types=["OUTBOUND_DISPATCH"]),
        "crm": DomainRule(types=["LOCK_CUSTOMER"]),
        "ticket": DomainRule(types=["TICKET_ACCEPT", "TICKET_DONE"]),
        "risk": DomainRule(types=["RISK_CHECK"]),
        "credit": DomainRule(types=["CREDIT_APPLY", "CREDIT_APPROVE"]),
        "consumer": DomainRule(types=["LOAN_APPLY"]),
        "demo": DomainRule(types=["PING", "BROADCAST", "LOG", "REQ_MAIN_PUSH"]),
    },
    types={
        "OUTBOUND_DISPATCH": TypeRule(sources=["workbench", "main"], targets=["dialer"]),
        "TICKET_DONE": TypeRule(sources=["partner:*", "main"]),
        "CREDIT_APPLY": TypeRule(sources=["credit*", "partner:credit", "main"]),
        "CREDIT_APPROVE": TypeRule(sources=["credit*", "partner:credit", "main"]),
    },
)
