"""Policy package.

- models.py: policy file schema
- loader.py: reading policy files and the settings default
- resolver.py: immutable snapshots and most-specific-match resolution
- reloader.py: background hot reload
"""

from limiter.app.services.policy.loader import (
    DEFAULT_POLICY_NAME,
    default_policy_entry,
    load_configured_policies,
    load_policy_file,
    parse_policy_document,
)
from limiter.app.services.policy.models import PolicyEntry, PolicyFile, PolicyMatch
from limiter.app.services.policy.reloader import PolicyReloader
from limiter.app.services.policy.resolver import (
    PolicyResolver,
    PolicySnapshot,
    get_policy_resolver,
    reset_policy_resolver,
)

__all__ = [
    "DEFAULT_POLICY_NAME",
    "PolicyEntry",
    "PolicyFile",
    "PolicyMatch",
    "PolicyReloader",
    "PolicyResolver",
    "PolicySnapshot",
    "default_policy_entry",
    "get_policy_resolver",
    "load_configured_policies",
    "load_policy_file",
    "parse_policy_document",
    "reset_policy_resolver",
]
