"""PolicyRouter — validates envelopes against the active routing policy.

Validation order is fixed: structure, domain membership, source
authorization, target authorization.  The first failing check raises the
matching ``EnvelopeValidationError`` subclass and nothing else runs.

The policy itself is data.  ``reload`` swaps it atomically; a document that
fails to parse raises ``PolicyLoadError`` and leaves the previous policy
active, so validation results never change because of a bad reload.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from ipcbus.core.codec import parse_envelope
from ipcbus.core.errors import (
    DomainTypeMismatch,
    EnvelopeValidationError,
    MalformedEnvelope,
    PolicyLoadError,
    UnauthorizedSource,
    UnauthorizedTarget,
    UnknownDomain,
)
from ipcbus.models.envelopes import Envelope
from ipcbus.models.policy import DEFAULT_POLICY, RoutingPolicy

logger = logging.getLogger(__name__)

_REQUIRED_FIELDS = ("id", "type", "domain", "source")


class PolicyRouter:
    """Holds the active ``RoutingPolicy`` and validates envelopes against it.

    Parameters
    ----------
    policy:
        Initial policy.  Defaults to ``DEFAULT_POLICY``.
    path:
        Optional JSON policy file.  When given, it is loaded immediately and
        ``refresh()`` re-reads it whenever its modification time changes.
    """

    def __init__(
        self,
        policy: RoutingPolicy | None = None,
        *,
        path: Path | str | None = None,
    ) -> None:
        self._policy = policy or DEFAULT_POLICY
        self._path: Path | None = None
        self._mtime_ns: int | None = None
        if path is not None:
            self.load_file(path)

    @property
    def policy(self) -> RoutingPolicy:
        return self._policy

    @property
    def path(self) -> Path | None:
        return self._path

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self, envelope: Envelope | Mapping[str, Any]) -> None:
        """Validate *envelope*; return ``None`` or raise.

        Raises
        ------
        MalformedEnvelope
            A required field is missing or empty.
        UnknownDomain
            The domain is not declared by the policy.
        DomainTypeMismatch
            The type is not listed under the envelope's domain.
        UnauthorizedSource / UnauthorizedTarget
            The identity is not allowed for this type.
        """
        env = parse_envelope(envelope)
        policy = self._policy

        # 1. Structure
        missing = [name for name in _REQUIRED_FIELDS if not getattr(env, name)]
        if env.ts <= 0:
            missing.append("ts")
        if missing:
            raise MalformedEnvelope(
                f"Envelope missing required field(s): {', '.join(missing)}",
                envelope_id=env.id,
            )

        # 2. Domain membership
        domain_rule = policy.domains.get(env.domain)
        if domain_rule is None:
            raise UnknownDomain(
                f"Unknown domain {env.domain!r} for type {env.type!r}",
                envelope_id=env.id,
            )
        if env.type not in domain_rule.types:
            owners = policy.domains_for(env.type)
            hint = f" (belongs to {', '.join(owners)})" if owners else ""
            raise DomainTypeMismatch(
                f"Type {env.type!r} is not allowed in domain {env.domain!r}{hint}",
                envelope_id=env.id,
            )

        # 3. Source authorization
        rule = policy.rule_for(env.type)
        if not rule.allows_source(env.source):
            raise UnauthorizedSource(
                f"Source {env.source!r} may not emit {env.type!r}",
                envelope_id=env.id,
            )

        # 4. Target authorization
        if env.target is not None and not rule.allows_target(env.target):
            raise UnauthorizedTarget(
                f"Target {env.target!r} may not receive {env.type!r}",
                envelope_id=env.id,
            )

    def is_valid(self, envelope: Envelope | Mapping[str, Any]) -> bool:
        try:
            self.validate(envelope)
        except EnvelopeValidationError:
            return False
        return True

    def known_types(self) -> frozenset[str]:
        return self._policy.known_types()

    def domain_for(self, event_type: str) -> list[str]:
        return self._policy.domains_for(event_type)

    # ------------------------------------------------------------------
    # Hot reload
    # ------------------------------------------------------------------

    def reload(self, document: RoutingPolicy | Mapping[str, Any] | str | bytes) -> RoutingPolicy:
        """Replace the active policy with *document*.

        Raises
        ------
        PolicyLoadError
            If the document cannot be parsed.  The previous policy stays
            active.
        """
        try:
            if isinstance(document, RoutingPolicy):
                new_policy = document
            elif isinstance(document, (str, bytes)):
                new_policy = RoutingPolicy.model_validate_json(document)
            else:
                new_policy = RoutingPolicy.model_validate(dict(document))
        except (ValidationError, TypeError, ValueError) as exc:
            logger.error("Policy reload rejected; keeping previous policy: %s", exc)
            raise PolicyLoadError(f"Invalid routing policy: {exc}") from exc

        self._policy = new_policy
        logger.info(
            "Routing policy loaded: %d domain(s), %d type rule(s)",
            len(new_policy.domains),
            len(new_policy.types),
        )
        return new_policy

    def load_file(self, path: Path | str) -> RoutingPolicy:
        """Load a JSON policy file and remember it for ``refresh()``."""
        self._path = Path(path)
        try:
            stat = self._path.stat()
            raw = self._path.read_text(encoding="utf-8")
        except OSError as exc:
            raise PolicyLoadError(f"Cannot read policy file {self._path}: {exc}") from exc
        self._mtime_ns = stat.st_mtime_ns
        return self.reload(raw)

    def refresh(self) -> bool:
        """Reload the policy file if it changed since the last load.

        Never raises: a failed reload is logged and the last-known-good
        policy stays in effect.  Returns ``True`` if a new policy was loaded.
        """
        if self._path is None:
            return False
        try:
            mtime_ns = self._path.stat().st_mtime_ns
        except OSError as exc:
            logger.warning("Policy file %s unavailable: %s", self._path, exc)
            return False
        if mtime_ns == self._mtime_ns:
            return False

        self._mtime_ns = mtime_ns
        try:
            self.reload(self._path.read_text(encoding="utf-8"))
        except (OSError, PolicyLoadError):
            logger.exception("Policy refresh from %s failed", self._path)
            return False
        return True


def dump_policy(policy: RoutingPolicy) -> str:
    """Pretty JSON for a policy document (used by the CLI)."""
    return json.dumps(policy.model_dump(mode="json", exclude_none=True), indent=2)
