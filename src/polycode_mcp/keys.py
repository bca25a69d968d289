"""Composite identity for command instances.

A command instance is the pairing of one command definition with one location.
Its key is ``definition_id + ":" + location_id``. Ids are required to be
non-empty and free of the delimiter so that the key always parses back into
exactly the pair it was built from, and so that "every instance of definition
X" is a plain prefix match on ``X + ":"``.
"""

from __future__ import annotations

from dataclasses import dataclass

DELIMITER = ":"


class InvalidInstanceKeyError(ValueError):
    """Raised when an id or key cannot take part in a composite instance key."""


def validate_identifier(value: str, *, kind: str = "identifier") -> str:
    """Return ``value`` unchanged if it is usable as one half of an instance key."""

    if not isinstance(value, str) or not value:
        raise InvalidInstanceKeyError(f"{kind} must be a non-empty string")
    if DELIMITER in value:
        raise InvalidInstanceKeyError(f"{kind} {value!r} must not contain {DELIMITER!r}")
    return value


@dataclass(frozen=True, slots=True)
class InstanceKey:
    """Structured form of a composite instance key."""

    definition_id: str
    location_id: str

    def __post_init__(self) -> None:
        validate_identifier(self.definition_id, kind="definition id")
        validate_identifier(self.location_id, kind="location id")

    def __str__(self) -> str:
        return f"{self.definition_id}{DELIMITER}{self.location_id}"

    @classmethod
    def parse(cls, key: str) -> "InstanceKey":
        if not isinstance(key, str) or key.count(DELIMITER) != 1:
            raise InvalidInstanceKeyError(f"Malformed instance key {key!r}")
        definition_id, location_id = key.split(DELIMITER)
        return cls(definition_id, location_id)


def instance_key(definition_id: str, location_id: str) -> str:
    return str(InstanceKey(definition_id, location_id))


def parse_instance_key(key: str) -> tuple[str, str]:
    parsed = InstanceKey.parse(key)
    return parsed.definition_id, parsed.location_id


def definition_prefix(definition_id: str) -> str:
    """Prefix shared by every instance key of ``definition_id``."""

    return validate_identifier(definition_id, kind="definition id") + DELIMITER


def belongs_to(key: str, definition_id: str) -> bool:
    return key.startswith(definition_prefix(definition_id))


__all__ = [
    "DELIMITER",
    "InstanceKey",
    "InvalidInstanceKeyError",
    "belongs_to",
    "definition_prefix",
    "instance_key",
    "parse_instance_key",
    "validate_identifier",
]
