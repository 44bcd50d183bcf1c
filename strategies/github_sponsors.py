"""GitHub Sponsors strategy: reports monthly sponsorship income via GraphQL.

Income only shows up once the owner has a Sponsors listing with tiers; the
strategy just fetches and reports what GitHub already knows.
"""

from __future__ import annotations

import dataclasses
import logging
from datetime import datetime, timezone
from typing import Any

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from core.actions import Action, ActionContext
from core.compliance_engine import PolicyViolation
from core.config import GitHubConfig, load_config
from strategies.base import StrategyContext, StrategyModule

logger = logging.getLogger(__name__)

USER_AGENT = "money-machine-github-sponsors-strategy"

_SPONSORS_FIELDS = """
    login
    sponsorsListing {
      fullDescription
      activeGoal { title percentComplete targetValue }
    }
    sponsors(first: 100) {
      totalCount
      nodes { ... on User { login } ... on Organization { login } }
    }
    sponsorshipsAsMaintainer(first: 100, includePrivate: false, activeOnly: true) {
      totalCount
      totalRecurringMonthlyPriceInCents
      totalRecurringMonthlyPriceInDollars
      nodes {
        isOneTimePayment
        privacyLevel
        tier { name monthlyPriceInCents monthlyPriceInDollars isOneTime }
        createdAt
      }
    }
    hasSponsorsListing
    monthlyEstimatedSponsorsIncomeInCents
"""

USER_QUERY = "query($login: String!) { user(login: $login) {" + _SPONSORS_FIELDS + "} }"
ORG_QUERY = "query($login: String!) { organization(login: $login) {" + _SPONSORS_FIELDS + "} }"

# context.config keys that may override GitHubConfig fields
_OVERRIDE_KEYS = {f.name for f in dataclasses.fields(GitHubConfig)}


class StrategyError(Exception):
    def __init__(self, message: str, code: str, status_code: int | None = None):
        super().__init__(message)
        self.code = code
        self.status_code = status_code


def error_hint(exc: Exception) -> str:
    """Human-readable next step for a failed fetch."""
    code = getattr(exc, "code", None)
    status = getattr(exc, "status_code", None)
    message = str(exc)
    if "GITHUB_TOKEN" in message:
        return "Set the GITHUB_TOKEN environment variable with a token that has read:user scope."
    if "login" in message:
        return "Set the GITHUB_REPOSITORY_OWNER environment variable to your GitHub username."
    if code == "API_ERROR" and status == 401:
        return "Your GitHub token may be invalid or expired. Generate a new token at github.com/settings/tokens."
    if code == "API_ERROR" and status == 403:
        return "Rate limited or insufficient permissions. Check your token scopes."
    if code == "NOT_FOUND":
        return "The user/organization was not found. Check the login name is correct."
    return "Check the error message above for more details."


class GitHubSponsorsStrategy(StrategyModule):
    def __init__(self, github: GitHubConfig | None = None) -> None:
        super().__init__()
        self._github = github
        self.settings: GitHubConfig | None = None
        self.last_fetched: dict[str, Any] | None = None

    @property
    def name(self) -> str:
        return "github-sponsors"

    @property
    def description(self) -> str:
        return "Track and report GitHub Sponsors income with verification"

    @property
    def estimated_time_to_first_dollar(self) -> str:
        return "Variable - depends on project popularity and sponsor tiers"

    @property
    def automation_level(self) -> float:
        return 0.95

    # ── configuration ─────────────────────────────────────────────

    def _resolve_settings(self, context: StrategyContext) -> GitHubConfig:
        base = self._github or load_config().github
        overrides = {k: v for k, v in context.config.items() if k in _OVERRIDE_KEYS}
        return dataclasses.replace(base, **overrides)

    def initialize(self, context: StrategyContext) -> None:
        super().initialize(context)
        self.settings = self._resolve_settings(context)
        self.last_fetched = None
        logger.info(
            "github sponsors strategy initialized (login=%s, has_token=%s)",
            self.settings.login,
            bool(self.settings.token),
        )

    def validate(self, context: StrategyContext) -> dict[str, Any]:
        settings = self._resolve_settings(context)
        errors: list[str] = []
        if not settings.token:
            errors.append("GITHUB_TOKEN environment variable or config token is required")
        if not settings.login:
            errors.append(
                "GitHub login required via config login or GITHUB_REPOSITORY_OWNER environment variable"
            )
        return {"valid": not errors, "errors": errors, "warnings": []}

    # ── execution ─────────────────────────────────────────────────

    def execute(self, context: StrategyContext) -> dict[str, Any]:
        logger.info("executing github sponsors strategy")
        if self.settings is None:
            self.settings = self._resolve_settings(context)
        engine = context.compliance_engine or self.compliance_engine
        try:
            if engine is not None:
                engine.check_action(
                    Action(type="api-call", description="Fetch GitHub Sponsors data via GraphQL API"),
                    ActionContext(platform="github"),
                )
            data = self.fetch_sponsors_data()
        except (StrategyError, PolicyViolation, httpx.HTTPError) as exc:
            code = getattr(exc, "code", "UNKNOWN")
            self._record_error(str(exc), code=code)
            logger.warning("github sponsors strategy failed: %s", exc)
            return {
                "success": False,
                "error": str(exc),
                "error_code": code,
                "hint": error_hint(exc),
            }

        self.last_fetched = data
        cents = data.get("monthlyEstimatedSponsorsIncomeInCents") or 0
        dollars = cents / 100
        self.earnings = dollars
        self.actions += 1
        maintainer = data.get("sponsorshipsAsMaintainer") or {}
        now = datetime.now(timezone.utc).isoformat()

        result = {
            "success": True,
            "earnings": dollars,
            "earnings_cents": cents,
            "currency": "USD",
            "sponsor_count": (data.get("sponsors") or {}).get("totalCount", 0),
            "active_sponsorships": maintainer.get("totalCount", 0),
            "has_sponsors_listing": data.get("hasSponsorsListing"),
            "recurring_monthly_income": maintainer.get("totalRecurringMonthlyPriceInDollars", 0),
            "goal": (data.get("sponsorsListing") or {}).get("activeGoal"),
            "timestamp": now,
            "message": (
                f"Monthly sponsorship income: ${dollars:.2f}"
                if cents > 0
                else "No sponsorship income detected. Enable GitHub Sponsors to start earning."
            ),
            "verification": {"login": self.settings.login, "api_response": data, "fetched_at": now},
        }
        logger.info(
            "github sponsors data fetched: earnings=%.2f sponsors=%s",
            dollars,
            result["sponsor_count"],
        )
        if engine is not None:
            engine.log_action(
                Action(type="api-call"),
                {"success": True, "earnings": dollars},
                ActionContext(platform="github"),
            )
        return result

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def _post_graphql(self, settings: GitHubConfig, query: str) -> httpx.Response:
        return httpx.post(
            settings.api_url,
            json={"query": query, "variables": {"login": settings.login}},
            headers={
                "Authorization": f"Bearer {settings.token}",
                "Content-Type": "application/json",
                "User-Agent": USER_AGENT,
            },
            timeout=20.0,
        )

    def fetch_sponsors_data(self) -> dict[str, Any]:
        """POST the sponsors query and return the user/organization node."""
        settings = self.settings
        if settings is None or not settings.token:
            raise StrategyError(
                "GITHUB_TOKEN is required. Set it via environment variable or config.", "CONFIG_ERROR"
            )
        if not settings.login:
            raise StrategyError(
                "GitHub login is required. Set GITHUB_REPOSITORY_OWNER or provide login in config.",
                "CONFIG_ERROR",
            )

        query = ORG_QUERY if settings.is_organization else USER_QUERY
        resp = self._post_graphql(settings, query)
        if resp.status_code != 200:
            raise StrategyError(
                f"GitHub API request failed: {resp.status_code}", "API_ERROR", resp.status_code
            )

        payload = resp.json()
        errors = payload.get("errors") or []
        if errors:
            raise StrategyError(
                "GraphQL errors: " + ", ".join(e.get("message", "?") for e in errors),
                "GRAPHQL_ERROR",
            )

        entity = "organization" if settings.is_organization else "user"
        node = (payload.get("data") or {}).get(entity)
        if not node:
            raise StrategyError(f"No data found for {entity}: {settings.login}", "NOT_FOUND")
        return node

    def get_status(self) -> dict[str, Any]:
        status = super().get_status()
        status["last_fetched"] = self.last_fetched
        status["config"] = {
            "login": self.settings.login if self.settings else None,
            "is_organization": self.settings.is_organization if self.settings else False,
            "has_token": bool(self.settings and self.settings.token),
        }
        return status

    def shutdown(self) -> None:
        super().shutdown()
        self.last_fetched = None
        logger.info("github sponsors strategy shut down")
