"""Tests for strategies/github_sponsors.py.

HTTP calls are mocked so no real GitHub API traffic is generated.
"""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from core.compliance_engine import ComplianceEngine
from core.config import GitHubConfig
from core.rate_limiter import RateLimiter
from strategies.base import StrategyContext
from strategies.github_sponsors import (
    ORG_QUERY,
    USER_AGENT,
    USER_QUERY,
    GitHubSponsorsStrategy,
)

_SETTINGS = GitHubConfig(token="test-token", login="test-user")

_USER_NODE = {
    "login": "test-user",
    "sponsorsListing": {"activeGoal": {"title": "Goal", "percentComplete": 40, "targetValue": 10}},
    "sponsors": {"totalCount": 3, "nodes": []},
    "sponsorshipsAsMaintainer": {
        "totalCount": 2,
        "totalRecurringMonthlyPriceInCents": 1200,
        "totalRecurringMonthlyPriceInDollars": 12,
        "nodes": [],
    },
    "hasSponsorsListing": True,
    "monthlyEstimatedSponsorsIncomeInCents": 1234,
}


def _response(status: int = 200, payload: dict | None = None) -> MagicMock:
    resp = MagicMock()
    resp.status_code = status
    resp.json.return_value = payload if payload is not None else {"data": {"user": _USER_NODE}}
    resp.text = ""
    return resp


@pytest.fixture
def strategy() -> GitHubSponsorsStrategy:
    s = GitHubSponsorsStrategy(_SETTINGS)
    s.initialize(StrategyContext())
    return s


class TestProperties:
    def test_metadata(self) -> None:
        s = GitHubSponsorsStrategy(_SETTINGS)
        assert s.name == "github-sponsors"
        assert s.description
        assert s.required_accounts == []
        assert 0 <= s.automation_level <= 1

    def test_initialize_applies_context_overrides(self) -> None:
        s = GitHubSponsorsStrategy(_SETTINGS)
        s.initialize(StrategyContext(config={"login": "other-user", "unrelated": 1}))
        assert s.status == "ready"
        status = s.get_status()
        assert status["config"] == {"login": "other-user", "is_organization": False, "has_token": True}


class TestValidate:
    def test_missing_token_and_login(self) -> None:
        result = GitHubSponsorsStrategy(GitHubConfig()).validate(StrategyContext())
        assert result["valid"] is False
        assert len(result["errors"]) == 2

    def test_context_can_supply_settings(self) -> None:
        result = GitHubSponsorsStrategy(GitHubConfig()).validate(
            StrategyContext(config={"token": "t", "login": "me"})
        )
        assert result["valid"] is True


class TestExecute:
    @patch("strategies.github_sponsors.httpx.post")
    def test_happy_path_reports_earnings(self, mock_post, strategy: GitHubSponsorsStrategy) -> None:
        mock_post.return_value = _response()
        result = strategy.execute(StrategyContext())

        assert result["success"] is True
        assert result["earnings"] == 12.34
        assert result["earnings_cents"] == 1234
        assert result["sponsor_count"] == 3
        assert result["active_sponsorships"] == 2
        assert result["message"] == "Monthly sponsorship income: $12.34"
        assert strategy.earnings == 12.34
        assert strategy.actions == 1

        kwargs = mock_post.call_args.kwargs
        assert kwargs["json"]["query"] == USER_QUERY
        assert kwargs["json"]["variables"] == {"login": "test-user"}
        assert kwargs["headers"]["Authorization"] == "Bearer test-token"
        assert kwargs["headers"]["User-Agent"] == USER_AGENT

    @patch("strategies.github_sponsors.httpx.post")
    def test_zero_income_message(self, mock_post, strategy: GitHubSponsorsStrategy) -> None:
        node = {**_USER_NODE, "monthlyEstimatedSponsorsIncomeInCents": 0}
        mock_post.return_value = _response(payload={"data": {"user": node}})
        result = strategy.execute(StrategyContext())
        assert result["earnings"] == 0
        assert "Enable GitHub Sponsors" in result["message"]

    @patch("strategies.github_sponsors.httpx.post")
    def test_organization_query(self, mock_post) -> None:
        s = GitHubSponsorsStrategy(GitHubConfig(token="t", login="org", is_organization=True))
        s.initialize(StrategyContext())
        mock_post.return_value = _response(payload={"data": {"organization": _USER_NODE}})
        assert s.execute(StrategyContext())["success"] is True
        assert mock_post.call_args.kwargs["json"]["query"] == ORG_QUERY

    @patch("strategies.github_sponsors.httpx.post")
    def test_unauthorized_gives_hint(self, mock_post, strategy: GitHubSponsorsStrategy) -> None:
        mock_post.return_value = _response(status=401)
        result = strategy.execute(StrategyContext())
        assert result["success"] is False
        assert result["error_code"] == "API_ERROR"
        assert "invalid or expired" in result["hint"]
        assert len(strategy.errors) == 1

    @patch("strategies.github_sponsors.httpx.post")
    def test_graphql_errors(self, mock_post, strategy: GitHubSponsorsStrategy) -> None:
        mock_post.return_value = _response(payload={"errors": [{"message": "bad field"}]})
        result = strategy.execute(StrategyContext())
        assert result["error_code"] == "GRAPHQL_ERROR"
        assert "bad field" in result["error"]

    @patch("strategies.github_sponsors.httpx.post")
    def test_user_not_found(self, mock_post, strategy: GitHubSponsorsStrategy) -> None:
        mock_post.return_value = _response(payload={"data": {"user": None}})
        result = strategy.execute(StrategyContext())
        assert result["error_code"] == "NOT_FOUND"
        assert "not found" in result["hint"]

    @patch("strategies.github_sponsors.httpx.post")
    def test_posts_to_configured_endpoint(self, mock_post) -> None:
        s = GitHubSponsorsStrategy(
            GitHubConfig(token="t", login="me", api_url="https://github.internal/api/graphql")
        )
        s.initialize(StrategyContext())
        mock_post.return_value = _response()
        assert s.execute(StrategyContext())["success"] is True
        assert mock_post.call_args.args[0] == "https://github.internal/api/graphql"
        assert mock_post.call_args.kwargs["json"]["variables"] == {"login": "me"}

    @patch("strategies.github_sponsors.httpx.post")
    def test_missing_token_never_calls_api(self, mock_post) -> None:
        s = GitHubSponsorsStrategy(GitHubConfig(login="me"))
        s.initialize(StrategyContext())
        result = s.execute(StrategyContext())
        assert result["error_code"] == "CONFIG_ERROR"
        assert "GITHUB_TOKEN" in result["hint"]
        mock_post.assert_not_called()


class TestComplianceGate:
    @patch("strategies.github_sponsors.httpx.post")
    def test_rate_limited_action_is_blocked_before_fetch(self, mock_post) -> None:
        limiter = RateLimiter()
        limiter.set_platform_limits("github", requests_per_minute=1, requests_per_hour=1, burst_limit=1)
        engine = ComplianceEngine(rate_limiter=limiter)
        ctx = StrategyContext(compliance_engine=engine, rate_limiter=limiter)
        s = GitHubSponsorsStrategy(_SETTINGS)
        s.initialize(ctx)
        mock_post.return_value = _response()

        assert s.execute(ctx)["success"] is True
        blocked = s.execute(ctx)
        assert blocked["success"] is False
        assert "Rate limit exceeded" in blocked["error"]
        assert mock_post.call_count == 1

    @patch("strategies.github_sponsors.httpx.post")
    def test_successful_fetch_is_audited(self, mock_post) -> None:
        from core.activity_log import ActivityLog

        log = ActivityLog()
        engine = ComplianceEngine(rate_limiter=RateLimiter(), activity_log=log)
        ctx = StrategyContext(compliance_engine=engine)
        s = GitHubSponsorsStrategy(_SETTINGS)
        s.initialize(ctx)
        mock_post.return_value = _response()
        s.execute(ctx)
        audit = log.get_audit_log()
        assert audit[0]["action"] == "api-call"
        assert audit[0]["context"]["platform"] == "github"
