"""
Base Models and Common Helpers

Foundation classes for all federation models. Field names are snake_case
in Python and camelCase on the wire, so registry snapshots and proposal
documents produced by the civic client load without translation.
"""

import hashlib
import secrets
import string
import time
from datetime import UTC, datetime
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, StringConstraints, field_validator
from pydantic.alias_generators import to_camel

_BASE36 = string.digits + string.ascii_lowercase

# Trimmed even on models that keep free text verbatim
Identifier = Annotated[str, StringConstraints(strip_whitespace=True)]


def utc_now() -> datetime:
    """Timezone-aware current time."""
    return datetime.now(UTC)


def ensure_utc(value: Any) -> Any:
    """Attach UTC to naive datetimes and parse ISO strings (``Z`` suffix allowed)."""
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class FederationModel(BaseModel):
    """Base model for all mutable federation entities."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
        str_strip_whitespace=True,
        validate_assignment=True,
        use_enum_values=True,
    )

    @field_validator("*", mode="after")
    @classmethod
    def coerce_datetimes(cls, v: Any) -> Any:
        """Naive datetimes are taken to be UTC."""
        if isinstance(v, datetime):
            return ensure_utc(v)
        return v

    def to_document(self) -> dict[str, Any]:
        """Serialize to the camelCase JSON document form."""
        return self.model_dump(mode="json", by_alias=True)


class FrozenModel(FederationModel):
    """Immutable record. Produced once, never mutated."""

    model_config = ConfigDict(frozen=True)


# ═══════════════════════════════════════════════════════════════
# ID AND HASH GENERATION
# ═══════════════════════════════════════════════════════════════


def generate_proposal_id() -> str:
    """Generate a proposal id of the form ``prop_<epoch ms>_<9 base36 chars>``."""
    suffix = "".join(secrets.choice(_BASE36) for _ in range(9))
    return f"prop_{int(time.time() * 1000)}_{suffix}"


def sha256_hex(*parts: Any) -> str:
    """SHA-256 over the ``-``-joined string form of ``parts``."""
    joined = "-".join(str(p) for p in parts)
    return hashlib.sha256(joined.encode("utf-8")).hexdigest()


def chain_hash(previous: str, *parts: Any) -> str:
    """Extend a hash chain: ``0x`` + SHA-256(previous, parts)."""
    return "0x" + sha256_hex(previous, *parts)
