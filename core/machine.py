"""MoneyMachine: wires the rate limiter, compliance gate, accounts and strategies."""

from __future__ import annotations

import contextvars
import functools
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Iterator, TypeVar

from core.accounts import AccountManager
from core.activity_log import ActivityLog
from core.compliance_engine import ComplianceEngine
from core.config import AppConfig
from core.rate_limiter import RateLimiter
from core.scheduler import Scheduler
from core.strategy_manager import MachineError, StrategyManager
from strategies.base import StrategyContext, StrategyModule

logger = logging.getLogger(__name__)

# Loggers whose records the activity log captures.
_CAPTURED_LOGGERS = ("core", "strategies")

# The machine whose work is running in the current thread / context.
_active_machine: contextvars.ContextVar[MoneyMachine | None] = contextvars.ContextVar(
    "active_machine", default=None
)

# Logger levels from before the first machine attached.
_baseline_levels: dict[str, int] = {}

_F = TypeVar("_F", bound=Callable[..., Any])


def _attached_logs(pkg_logger: logging.Logger) -> list[ActivityLog]:
    return [h for h in pkg_logger.handlers if isinstance(h, ActivityLog)]


class _OwnRecordsFilter(logging.Filter):
    """Pass only records emitted while *machine* is the active machine."""

    def __init__(self, machine: MoneyMachine) -> None:
        super().__init__()
        self._machine = machine

    def filter(self, record: logging.LogRecord) -> bool:
        return _active_machine.get() is self._machine


def _scoped(method: _F) -> _F:
    @functools.wraps(method)
    def wrapper(self: MoneyMachine, *args: Any, **kwargs: Any) -> Any:
        with self._scope():
            return method(self, *args, **kwargs)

    return wrapper  # type: ignore[return-value]


class MoneyMachine:
    def __init__(self, config: AppConfig | None = None):
        self.config = config or AppConfig()
        self.activity_log = ActivityLog(level=self.config.machine.log_level)
        self.activity_log.addFilter(_OwnRecordsFilter(self))
        self.rate_limiter = RateLimiter()
        self.compliance_engine = ComplianceEngine(
            self.config.compliance, self.rate_limiter, self.activity_log
        )
        self.account_manager = AccountManager()
        self.strategy_manager = StrategyManager(
            max_concurrent=self.config.machine.max_concurrent_strategies
        )
        self.scheduler = Scheduler()
        self.initialized = False
        self.running = False
        self._attached = False
        self._attach_activity_log()

    def __enter__(self) -> MoneyMachine:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @contextmanager
    def _scope(self) -> Iterator[None]:
        token = _active_machine.set(self)
        try:
            yield
        finally:
            _active_machine.reset(token)

    def _attach_activity_log(self) -> None:
        for name in _CAPTURED_LOGGERS:
            pkg_logger = logging.getLogger(name)
            if not _attached_logs(pkg_logger):
                _baseline_levels[name] = pkg_logger.level
            pkg_logger.addHandler(self.activity_log)
            if pkg_logger.getEffectiveLevel() > self.activity_log.level:
                pkg_logger.setLevel(self.activity_log.level)
        self._attached = True

    def close(self) -> None:
        """Stop scheduling, detach the activity log and restore logger levels."""
        if self.running:
            self.stop()
        if not self._attached:
            return
        for name in _CAPTURED_LOGGERS:
            pkg_logger = logging.getLogger(name)
            pkg_logger.removeHandler(self.activity_log)
            remaining = _attached_logs(pkg_logger)
            pkg_logger.setLevel(_baseline_levels.get(name, logging.NOTSET))
            if remaining:
                # machines still attached keep the level they need
                lowest = min(h.level for h in remaining)
                if pkg_logger.getEffectiveLevel() > lowest:
                    pkg_logger.setLevel(lowest)
            else:
                _baseline_levels.pop(name, None)
        self._attached = False

    # ── lifecycle ─────────────────────────────────────────────────

    @_scoped
    def initialize(self) -> MoneyMachine:
        if self.initialized:
            logger.warning("money machine already initialized")
            return self
        logger.info("initializing money machine")
        for platform, limits in self.config.rate_limits.platform_limits.items():
            self.rate_limiter.set_platform_limits(
                platform,
                requests_per_minute=limits.requests_per_minute,
                requests_per_hour=limits.requests_per_hour,
                burst_limit=limits.burst_limit,
            )
        self.initialized = True
        logger.info("money machine initialized")
        return self

    def _ensure_initialized(self) -> None:
        if not self.initialized:
            raise MachineError("Money machine not initialized. Call initialize() first.")

    def _context(self, config: dict[str, Any] | None = None) -> StrategyContext:
        return StrategyContext(
            activity_log=self.activity_log,
            account_manager=self.account_manager,
            compliance_engine=self.compliance_engine,
            rate_limiter=self.rate_limiter,
            config=dict(config or {}),
        )

    # ── accounts / strategies ─────────────────────────────────────

    @_scoped
    def add_account(self, platform: str, credentials: dict[str, Any]) -> None:
        self._ensure_initialized()
        self.account_manager.add_account(platform, credentials)
        logger.info("account added: %s", platform)

    @_scoped
    def load_strategy(self, strategy: StrategyModule, config: dict[str, Any] | None = None) -> str:
        """Check required accounts, initialise and register *strategy*."""
        self._ensure_initialized()
        available = {a["platform"] for a in self.account_manager.list_accounts()}
        for required in strategy.required_accounts:
            if required not in available:
                raise MachineError(f"Strategy {strategy.name} requires account for {required}")
        strategy.initialize(self._context(config))
        return self.strategy_manager.load_strategy(strategy)

    @_scoped
    def run_once(self, strategy_ids: Iterable[str] | None = None) -> dict[str, dict[str, Any]]:
        """Execute each strategy one time, sequentially."""
        self._ensure_initialized()
        ids = list(strategy_ids) if strategy_ids is not None else self.strategy_manager.list_strategies()
        return {sid: self.strategy_manager.execute_strategy(sid, self._context()) for sid in ids}

    @_scoped
    def start(self, strategy_ids: Iterable[str] | None = None) -> None:
        self._ensure_initialized()
        if self.running:
            logger.warning("money machine already running")
            return
        ids = list(strategy_ids) if strategy_ids is not None else self.strategy_manager.list_strategies()
        interval = self.config.machine.strategy_interval_s
        for sid in ids:
            self.scheduler.schedule_task(
                f"strategy-{sid}",
                functools.partial(self._execute_scheduled, sid),
                interval_s=interval,
            )
        self.running = True
        logger.info("money machine started: %d strategies every %.0fs", len(ids), interval)

    @_scoped
    def _execute_scheduled(self, strategy_id: str) -> dict[str, Any]:
        # scheduler threads start with an empty context
        return self.strategy_manager.execute_strategy(strategy_id, self._context())

    @_scoped
    def stop(self) -> None:
        if not self.running:
            logger.warning("money machine not running")
            return
        logger.info("stopping money machine")
        self.scheduler.shutdown()
        self.running = False
        logger.info("money machine stopped")

    # ── reporting ─────────────────────────────────────────────────

    def get_status(self) -> dict[str, Any]:
        return {
            "initialized": self.initialized,
            "running": self.running,
            "accounts": self.account_manager.list_accounts(),
            "strategies": self.strategy_manager.get_performance_metrics(),
            "compliance": self.compliance_engine.generate_compliance_report(),
            "rate_limits": self.rate_limiter.get_stats(),
        }

    def get_earnings_report(self) -> dict[str, Any]:
        metrics = self.strategy_manager.get_performance_metrics()
        total = sum(m.get("total_earnings", 0.0) or 0.0 for m in metrics.values())
        return {
            "total_earnings": total,
            "by_strategy": metrics,
            "generated_at": datetime.now(timezone.utc).isoformat(),
        }


def create_money_machine(config: AppConfig | None = None) -> MoneyMachine:
    """Build and initialise a MoneyMachine."""
    return MoneyMachine(config).initialize()
