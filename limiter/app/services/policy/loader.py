"""Loading policy entries from the JSON policy file or from settings."""

import json
from typing import TYPE_CHECKING, List

from pydantic import ValidationError

from limiter.app.core.logging import get_logger
from limiter.app.exceptions import InvalidPolicy
from limiter.app.models import Algorithm
from limiter.app.services.policy.models import PolicyEntry, PolicyFile

if TYPE_CHECKING:
    from limiter.app.core.config import Settings

logger = get_logger(__name__)

DEFAULT_POLICY_NAME = "default"


def parse_policy_document(raw: str, source: str = "<string>") -> List[PolicyEntry]:
    """Parse the JSON text of a policy file.

    Raises:
        InvalidPolicy: the text is not valid JSON or does not match the schema
    """
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise InvalidPolicy(f"{source} is not valid JSON: {e}")

    try:
        document = PolicyFile.model_validate(data)
    except ValidationError as e:
        errors = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
            for err in e.errors()
        )
        raise InvalidPolicy(f"{source} failed validation: {errors}")

    return document.policies


def load_policy_file(path: str) -> List[PolicyEntry]:
    """Read and parse a policy file.

    Raises:
        InvalidPolicy: the file cannot be read or parsed
    """
    try:
        with open(path, encoding="utf-8") as f:
            raw = f.read()
    except OSError as e:
        raise InvalidPolicy(f"cannot read policy file {path}: {e}")
    return parse_policy_document(raw, source=path)


def default_policy_entry(settings: "Settings") -> PolicyEntry:
    """Global default policy built from the rate_limit_* settings."""
    try:
        algorithm = Algorithm(settings.rate_limit_algorithm)
    except ValueError:
        raise InvalidPolicy(
            f"unknown algorithm '{settings.rate_limit_algorithm}'",
            DEFAULT_POLICY_NAME,
        )

    bucket = algorithm in (Algorithm.TOKEN_BUCKET, Algorithm.LEAKY_BUCKET)
    return PolicyEntry(
        name=DEFAULT_POLICY_NAME,
        algorithm=algorithm,
        capacity=settings.rate_limit_requests_per_minute,
        window_seconds=settings.rate_limit_window_seconds,
        burst_allowance=settings.rate_limit_burst_size if bucket else 0,
    )


def load_configured_policies(settings: "Settings") -> List[PolicyEntry]:
    """Entries from settings.policy_file, or just the settings default."""
    if settings.policy_file:
        entries = load_policy_file(settings.policy_file)
        logger.info(f"Loaded {len(entries)} policies from {settings.policy_file}")
        return entries
    logger.info("No policy file configured, using default policy from settings")
    return [default_policy_entry(settings)]
