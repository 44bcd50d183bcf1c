"""Load and validate application configuration from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

from dotenv import load_dotenv

load_dotenv()


@dataclass(frozen=True)
class PlatformLimits:
    requests_per_minute: int = 60
    requests_per_hour: int = 1000
    burst_limit: int = 10


DEFAULT_LIMITS = PlatformLimits()

# Known platform ceilings applied by MoneyMachine.initialize().
_KNOWN_PLATFORM_LIMITS: Mapping[str, PlatformLimits] = MappingProxyType({
    "github": PlatformLimits(requests_per_minute=80, requests_per_hour=5000, burst_limit=20),
    "reddit": PlatformLimits(requests_per_minute=60, requests_per_hour=600, burst_limit=10),
    "fiverr": PlatformLimits(requests_per_minute=30, requests_per_hour=500, burst_limit=5),
})


@dataclass(frozen=True)
class RateLimitConfig:
    platform_limits: Mapping[str, PlatformLimits] = field(
        default_factory=lambda: dict(_KNOWN_PLATFORM_LIMITS)
    )


@dataclass(frozen=True)
class ComplianceConfig:
    # strict = fail-closed (raise), lenient = observe-only
    strict_mode: bool = True


@dataclass(frozen=True)
class MachineConfig:
    log_level: str = "info"
    max_concurrent_strategies: int = 3
    strategy_interval_s: float = 60.0


@dataclass(frozen=True)
class GitHubConfig:
    token: str | None = None
    login: str | None = None  # user or organization login
    is_organization: bool = False
    api_url: str = "https://api.github.com/graphql"


@dataclass(frozen=True)
class AppConfig:
    machine: MachineConfig = field(default_factory=MachineConfig)
    compliance: ComplianceConfig = field(default_factory=ComplianceConfig)
    rate_limits: RateLimitConfig = field(default_factory=RateLimitConfig)
    github: GitHubConfig = field(default_factory=GitHubConfig)


def _getenv(name: str, default: str | None = None) -> str | None:
    """os.getenv wrapper that strips inline comments (e.g. '3  # note' → '3')."""
    raw = os.getenv(name, default)
    if raw is None:
        return None
    return raw.split(" #")[0].strip()


_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}


def _getbool(name: str, default: bool) -> bool:
    value = _getenv(name)
    if not value:
        return default
    lowered = value.lower()
    if lowered in _TRUTHY:
        return True
    if lowered in _FALSY:
        return False
    raise EnvironmentError(f"Environment variable {name}={value!r} is not a boolean")


def _getnumber(name: str, default: str, cast: type) -> float | int:
    value = _getenv(name, default) or default
    try:
        return cast(value)
    except ValueError:
        raise EnvironmentError(
            f"Environment variable {name}={value!r} is not a valid {cast.__name__}"
        ) from None


def load_config() -> AppConfig:
    """Build AppConfig from environment. Raises EnvironmentError on malformed values."""
    return AppConfig(
        machine=MachineConfig(
            log_level=(_getenv("LOG_LEVEL", "info") or "info").lower(),
            max_concurrent_strategies=int(_getnumber("MAX_CONCURRENT_STRATEGIES", "3", int)),
            strategy_interval_s=float(_getnumber("STRATEGY_INTERVAL_SECONDS", "60", float)),
        ),
        compliance=ComplianceConfig(strict_mode=_getbool("STRICT_COMPLIANCE", True)),
        rate_limits=RateLimitConfig(),
        github=GitHubConfig(
            token=_getenv("GITHUB_TOKEN"),
            login=_getenv("GITHUB_REPOSITORY_OWNER"),
            is_organization=_getbool("GITHUB_IS_ORGANIZATION", False),
            api_url=_getenv("GITHUB_GRAPHQL_URL", "https://api.github.com/graphql"),  # type: ignore[arg-type]
        ),
    )
