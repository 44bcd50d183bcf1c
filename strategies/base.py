"""Base class for income strategies."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from core.accounts import AccountManager
    from core.activity_log import ActivityLog
    from core.compliance_engine import ComplianceEngine
    from core.rate_limiter import RateLimiter


@dataclass
class StrategyContext:
    """Collaborators handed to a strategy on initialize/validate/execute."""

    activity_log: ActivityLog | None = None
    account_manager: AccountManager | None = None
    compliance_engine: ComplianceEngine | None = None
    rate_limiter: RateLimiter | None = None
    config: dict[str, Any] = field(default_factory=dict)


class StrategyModule(ABC):
    def __init__(self, config: dict[str, Any] | None = None) -> None:
        self.config: dict[str, Any] = dict(config or {})
        self.status = "initialized"
        self.earnings = 0.0
        self.actions = 0
        self.errors: list[dict[str, Any]] = []
        self.compliance_engine: ComplianceEngine | None = None

    @property
    @abstractmethod
    def name(self) -> str: ...

    @property
    def description(self) -> str:
        return "No description provided"

    @property
    def required_accounts(self) -> list[str]:
        return []

    @property
    def estimated_time_to_first_dollar(self) -> str:
        return "unknown"

    @property
    def automation_level(self) -> float:
        """0.0 (fully manual) .. 1.0 (fully automated)."""
        return 0.5

    def initialize(self, context: StrategyContext) -> None:
        self.compliance_engine = context.compliance_engine
        self.status = "ready"

    @abstractmethod
    def execute(self, context: StrategyContext) -> dict[str, Any]:
        """Run one cycle.  Must return a result dict with a ``success`` key."""

    def validate(self, context: StrategyContext) -> dict[str, Any]:
        return {"valid": True, "errors": []}

    def shutdown(self) -> None:
        self.status = "stopped"

    def _record_error(self, message: str, **extra: Any) -> None:
        self.errors.append({
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "error": message,
            **extra,
        })

    def get_status(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status,
            "earnings": self.earnings,
            "actions": self.actions,
            "error_count": len(self.errors),
        }

    def get_metrics(self) -> dict[str, Any]:
        success_rate = 0.0
        if self.actions:
            # failed runs record an error without an action
            success_rate = max(0.0, (self.actions - len(self.errors)) / self.actions)
        return {
            "total_earnings": self.earnings,
            "total_actions": self.actions,
            "success_rate": success_rate,
            "errors": self.errors[-10:],
        }
