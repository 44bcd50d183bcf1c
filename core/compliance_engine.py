"""Runtime compliance gate.  Every strategy action passes through here.

check_action() runs the legal, platform, rate-limit and disclosure checks in
that order, never short-circuiting, then aggregates.  In strict mode a failed
aggregate raises ComplianceViolation; in lenient mode it is only recorded.
"""

from __future__ import annotations

import copy
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Mapping

from core.actions import Action, ActionContext
from core.config import ComplianceConfig
from core.rate_limiter import RateLimiter, TokenCounts
from policies.compliance_rules import LEGAL_RULES, PLATFORM_RULES

if TYPE_CHECKING:
    from core.activity_log import ActivityLog

logger = logging.getLogger(__name__)


class PolicyViolation(Exception):
    """Raised when an action is blocked by policy."""


@dataclass(frozen=True)
class ComplianceCheck:
    category: str
    passed: bool
    violations: tuple[str, ...] = ()
    platform: str | None = None
    note: str | None = None
    remaining: TokenCounts | None = None


@dataclass(frozen=True)
class ComplianceResult:
    passed: bool
    checks: tuple[ComplianceCheck, ...]
    action_type: str
    timestamp: str

    @property
    def failed_checks(self) -> tuple[ComplianceCheck, ...]:
        return tuple(c for c in self.checks if not c.passed)


@dataclass(frozen=True)
class ComplianceReport:
    total_violations: int
    violations: list[ComplianceResult] = field(default_factory=list)
    generated_at: str = ""


class ComplianceViolation(PolicyViolation):
    """A failed compliance aggregate in strict mode.  ``result`` holds every check."""

    def __init__(self, result: ComplianceResult):
        self.result = result
        details = "; ".join(
            f"{c.category}: {', '.join(c.violations) or 'failed'}" for c in result.failed_checks
        )
        super().__init__(f"Action '{result.action_type}' violates compliance rules ({details})")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class ComplianceEngine:
    def __init__(
        self,
        config: ComplianceConfig | None = None,
        rate_limiter: RateLimiter | None = None,
        activity_log: ActivityLog | None = None,
    ):
        self.config = config or ComplianceConfig()
        self.strict_mode = self.config.strict_mode
        self.rate_limiter = rate_limiter
        self.activity_log = activity_log
        self.rules = self._load_rules()
        self._violations: list[ComplianceResult] = []
        self._violations_lock = threading.Lock()
        logger.debug("compliance engine initialized (strict_mode=%s)", self.strict_mode)

    @staticmethod
    def _load_rules() -> dict[str, Any]:
        return {
            "platforms": copy.deepcopy(PLATFORM_RULES),
            "legal": copy.deepcopy(LEGAL_RULES),
        }

    # ── pipeline ──────────────────────────────────────────────────

    def check_action(
        self,
        action: Action | Mapping[str, Any],
        context: ActionContext | Mapping[str, Any] | None = None,
    ) -> ComplianceResult:
        """Run every applicable check and aggregate.

        A token debited by the rate-limit stage stays spent even when a later
        stage fails.  Raises ComplianceViolation on failure in strict mode.
        """
        if not isinstance(action, Action):
            action = Action.from_mapping(action)
        if context is None:
            context = ActionContext()
        elif not isinstance(context, ActionContext):
            context = ActionContext.from_mapping(context)

        checks: list[ComplianceCheck] = [self._check_legal(action)]
        if context.platform:
            checks.append(self._check_platform_rules(context.platform, action))
        if context.platform and self.rate_limiter is not None:
            checks.append(self._check_rate_limit(self.rate_limiter, context.platform, action.type))
        if action.requires_disclosure:
            checks.append(self._check_disclosure(action))

        result = ComplianceResult(
            passed=all(c.passed for c in checks),
            checks=tuple(checks),
            action_type=action.type,
            timestamp=_now_iso(),
        )

        if result.passed:
            logger.debug("compliance check passed: action=%s", action.type)
            return result

        with self._violations_lock:
            self._violations.append(result)
        logger.warning(
            "compliance check FAILED: action=%s platform=%s failed=%s",
            action.type,
            context.platform,
            [c.category for c in result.failed_checks],
        )
        if self.strict_mode:
            raise ComplianceViolation(result)
        return result

    # ── individual checks ─────────────────────────────────────────

    def _check_legal(self, action: Action) -> ComplianceCheck:
        violations: list[str] = []
        if action.type == "unauthorized-access":
            violations.append("Unauthorized access is illegal")
        if action.type == "fraud" or action.fraudulent:
            violations.append("Fraudulent activity is illegal")
        if action.type == "spam" and not action.user_consent:
            violations.append("Spam without consent violates anti-spam laws")
        return ComplianceCheck(category="legal", passed=not violations, violations=tuple(violations))

    def _check_platform_rules(self, platform: str, action: Action) -> ComplianceCheck:
        rules = self.rules["platforms"].get(platform)
        if not rules:
            return ComplianceCheck(
                category="platform",
                passed=True,
                platform=platform,
                note=f"No specific rules loaded for {platform}",
            )

        violations: list[str] = []
        if (
            rules.get("no_automated_communication")
            and action.type == "send-message"
            and not action.personal_response
        ):
            violations.append(f"{platform} requires personal communication, not automated")
        if (
            rules.get("no_automated_bidding")
            and action.type == "submit-proposal"
            and action.automated
        ):
            violations.append(f"{platform} does not allow automated bidding")

        return ComplianceCheck(
            category="platform",
            passed=not violations,
            violations=tuple(violations),
            platform=platform,
        )

    def _check_rate_limit(
        self, limiter: RateLimiter, platform: str, action_type: str
    ) -> ComplianceCheck:
        if limiter.acquire_token(platform, action_type):
            return ComplianceCheck(category="rateLimit", passed=True, platform=platform)
        return ComplianceCheck(
            category="rateLimit",
            passed=False,
            violations=(f"Rate limit exceeded for platform {platform}",),
            platform=platform,
            remaining=limiter.get_remaining_quota(platform),
        )

    def _check_disclosure(self, action: Action) -> ComplianceCheck:
        violations: list[str] = []
        if not action.has_disclosure:
            violations.append("Required disclosure missing for affiliate/sponsored content")
        return ComplianceCheck(category="disclosure", passed=not violations, violations=tuple(violations))

    # ── audit / reporting ─────────────────────────────────────────

    def log_action(
        self,
        action: Action | Mapping[str, Any],
        result: Any,
        context: ActionContext | Mapping[str, Any] | None = None,
    ) -> None:
        """Record an already-executed action in the audit trail.  Gates nothing."""
        if self.activity_log is None:
            return
        action_type = action.type if isinstance(action, Action) else str(action.get("type", "unknown"))
        if context is None:
            platform = None
        elif isinstance(context, ActionContext):
            platform = context.platform
        else:
            platform = context.get("platform")
        self.activity_log.audit(
            action_type,
            result,
            {"platform": platform, "timestamp": _now_iso()},
        )

    def generate_compliance_report(self) -> ComplianceReport:
        with self._violations_lock:
            snapshot = list(self._violations)
        return ComplianceReport(
            total_violations=len(snapshot),
            violations=snapshot,
            generated_at=_now_iso(),
        )

    def clear_violations(self) -> None:
        with self._violations_lock:
            self._violations = []
