"""Policy resolution over immutable, versioned snapshots.

A reload builds a complete new PolicySnapshot and swaps the resolver's
reference in one assignment, so a request sees either the old policy set or
the new one, never a mix. A reload that fails validation leaves the current
snapshot in place.
"""

import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Callable, List, Mapping, Optional, Sequence, Tuple

from limiter.app.core.logging import get_logger
from limiter.app.exceptions import InvalidPolicy, NoPolicyFound
from limiter.app.models import FailureMode, LimitPolicy
from limiter.app.services.policy.models import PolicyEntry, PolicyMatch

logger = get_logger(__name__)

SnapshotListener = Callable[["PolicySnapshot"], None]


@dataclass(frozen=True)
class PolicySnapshot:
    """Immutable, indexed policy set.

    Attributes:
        version: Monotonic version, bumped on every successful reload
        default: Global default policy
        by_client_endpoint: (client_id, endpoint) -> policy
        by_tier_endpoint: (tier, endpoint) -> policy
        by_endpoint: endpoint -> policy
        rules: Every (match, policy) pair in file order
        loaded_at: Unix time the snapshot was built
    """
    version: int
    default: LimitPolicy
    by_client_endpoint: Mapping[Tuple[str, str], LimitPolicy]
    by_tier_endpoint: Mapping[Tuple[str, str], LimitPolicy]
    by_endpoint: Mapping[str, LimitPolicy]
    rules: Tuple[Tuple[PolicyMatch, LimitPolicy], ...]
    loaded_at: float = field(default_factory=time.time)

    @classmethod
    def build(
        cls,
        entries: Sequence[PolicyEntry],
        version: int = 1,
        default_failure_mode: FailureMode = FailureMode.OPEN,
    ) -> "PolicySnapshot":
        """Validate entries and index them by match shape.

        Raises:
            InvalidPolicy: bad numbers, unsupported or duplicate match criteria,
                or duplicate names
            NoPolicyFound: no entry with empty match criteria
        """
        by_client_endpoint = {}
        by_tier_endpoint = {}
        by_endpoint = {}
        default: Optional[LimitPolicy] = None
        names = set()
        rules = []

        for entry in entries:
            policy = entry.to_limit_policy(default_failure_mode)
            if policy.name in names:
                raise InvalidPolicy("duplicate policy name", policy.name)
            names.add(policy.name)

            match = entry.match
            if match.is_default:
                index, slot = None, None
                if default is not None:
                    raise InvalidPolicy(
                        f"default already defined by '{default.name}'", policy.name
                    )
                default = policy
            elif match.endpoint is None:
                raise InvalidPolicy(
                    "client_id and tier criteria require an endpoint", policy.name
                )
            elif match.client_id is not None and match.tier is not None:
                raise InvalidPolicy(
                    "match on either client_id or tier, not both", policy.name
                )
            elif match.client_id is not None:
                index, slot = by_client_endpoint, (match.client_id, match.endpoint)
            elif match.tier is not None:
                index, slot = by_tier_endpoint, (match.tier, match.endpoint)
            else:
                index, slot = by_endpoint, match.endpoint

            if index is not None:
                if slot in index:
                    raise InvalidPolicy(
                        f"same match criteria as '{index[slot].name}'", policy.name
                    )
                index[slot] = policy
            rules.append((match, policy))

        if default is None:
            raise NoPolicyFound()

        return cls(
            version=version,
            default=default,
            by_client_endpoint=MappingProxyType(by_client_endpoint),
            by_tier_endpoint=MappingProxyType(by_tier_endpoint),
            by_endpoint=MappingProxyType(by_endpoint),
            rules=tuple(rules),
        )

    def resolve(
        self,
        client_id: str,
        endpoint_class: str,
        tier: Optional[str] = None,
    ) -> LimitPolicy:
        """Most specific policy for the triple; falls back to the default."""
        policy = self.by_client_endpoint.get((client_id, endpoint_class))
        if policy is not None:
            return policy
        if tier is not None:
            policy = self.by_tier_endpoint.get((tier, endpoint_class))
            if policy is not None:
                return policy
        policy = self.by_endpoint.get(endpoint_class)
        if policy is not None:
            return policy
        return self.default

    @property
    def policies(self) -> List[LimitPolicy]:
        return [policy for _, policy in self.rules]


class PolicyResolver:
    """Maps (client id, endpoint class, tier) to a LimitPolicy.

    Usage:
        resolver = PolicyResolver()
        resolver.load(entries)
        policy = resolver.resolve("client-1", "search", tier="free")
    """

    def __init__(self, default_failure_mode: FailureMode = FailureMode.OPEN):
        self.default_failure_mode = default_failure_mode
        self._snapshot: Optional[PolicySnapshot] = None
        self._listeners: List[SnapshotListener] = []

    @property
    def snapshot(self) -> PolicySnapshot:
        """Active snapshot.

        Raises:
            NoPolicyFound: nothing has been loaded yet
        """
        snapshot = self._snapshot
        if snapshot is None:
            raise NoPolicyFound("No rate limit policies loaded")
        return snapshot

    @property
    def version(self) -> int:
        return self._snapshot.version if self._snapshot is not None else 0

    def add_listener(self, listener: SnapshotListener) -> None:
        """Register a callback invoked with each newly installed snapshot."""
        self._listeners.append(listener)

    def resolve(
        self,
        client_id: str,
        endpoint_class: str,
        tier: Optional[str] = None,
    ) -> LimitPolicy:
        """Resolve the policy for a request against the active snapshot."""
        return self.snapshot.resolve(client_id, endpoint_class, tier)

    def load(self, entries: Sequence[PolicyEntry]) -> PolicySnapshot:
        """Build a snapshot from entries and install it.

        Raises:
            InvalidPolicy, NoPolicyFound: the entries were rejected; the
                previously installed snapshot stays active
        """
        snapshot = PolicySnapshot.build(
            entries,
            version=self.version + 1,
            default_failure_mode=self.default_failure_mode,
        )
        self._snapshot = snapshot
        logger.info(
            f"Installed policy snapshot v{snapshot.version} "
            f"({len(snapshot.rules)} policies)"
        )
        for listener in self._listeners:
            listener(snapshot)
        return snapshot

    def reload_from_file(self, path: str) -> PolicySnapshot:
        """Load the policy file at path and install it."""
        from limiter.app.services.policy.loader import load_policy_file

        return self.load(load_policy_file(path))


# Global resolver instance (singleton pattern)
_resolver_instance: Optional[PolicyResolver] = None


def get_policy_resolver() -> PolicyResolver:
    """Get or create the global resolver, loading policies from settings."""
    global _resolver_instance

    if _resolver_instance is None:
        from limiter.app.core.config import settings
        from limiter.app.services.policy.loader import load_configured_policies

        resolver = PolicyResolver(
            default_failure_mode=(
                FailureMode.CLOSED
                if settings.rate_limit_fail_closed
                else FailureMode.OPEN
            )
        )
        resolver.load(load_configured_policies(settings))
        _resolver_instance = resolver
    return _resolver_instance


def reset_policy_resolver() -> None:
    """Reset the global resolver (useful for testing)."""
    global _resolver_instance
    _resolver_instance = None
