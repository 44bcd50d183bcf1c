"""Typed descriptors for actions proposed to the compliance engine."""

from __future__ import annotations

import re
from dataclasses import dataclass, fields
from typing import Any, Mapping

from policies.compliance_rules import DISCLOSURE_ACTION_TYPES

_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")


def _snake(key: str) -> str:
    return _CAMEL_RE.sub("_", key).lower()


def _normalise(data: Mapping[str, Any], allowed: set[str], kind: str) -> dict[str, Any]:
    out: dict[str, Any] = {}
    unknown: list[str] = []
    for key, value in data.items():
        name = _snake(key)
        if name not in allowed:
            unknown.append(key)
            continue
        out[name] = value
    if unknown:
        raise ValueError(f"Unrecognised {kind} field(s): {', '.join(sorted(unknown))}")
    return out


@dataclass(frozen=True)
class Action:
    """An outbound action a strategy wants to perform."""

    type: str
    description: str = ""
    fraudulent: bool = False
    user_consent: bool = False
    automated: bool = False
    personal_response: bool = False
    affiliate: bool = False
    sponsored: bool = False
    has_disclosure: bool = False

    @property
    def requires_disclosure(self) -> bool:
        return (
            self.type in DISCLOSURE_ACTION_TYPES
            or self.affiliate
            or self.sponsored
        )

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> Action:
        """Build from a dict with snake_case or camelCase keys.

        Raises ValueError when ``type`` is missing or a key is not a known field.
        """
        allowed = {f.name for f in fields(cls)}
        values = _normalise(data, allowed, "action")
        if not values.get("type"):
            raise ValueError("action requires a 'type'")
        return cls(**values)


@dataclass(frozen=True)
class ActionContext:
    platform: str | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> ActionContext:
        return cls(**_normalise(data, {"platform"}, "context"))
