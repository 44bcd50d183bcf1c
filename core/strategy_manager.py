"""Strategy registry and execution."""

from __future__ import annotations

import logging
import threading
from typing import Any

from strategies.base import StrategyContext, StrategyModule

logger = logging.getLogger(__name__)


class MachineError(Exception):
    """Orchestrator misuse: not initialised, unknown strategy, missing account."""


class StrategyManager:
    def __init__(self, max_concurrent: int = 3) -> None:
        self._strategies: dict[str, StrategyModule] = {}
        self._active: set[str] = set()
        self._lock = threading.Lock()
        self._slots = threading.BoundedSemaphore(max(1, max_concurrent))

    def load_strategy(self, strategy: StrategyModule) -> str:
        with self._lock:
            self._strategies[strategy.name] = strategy
        logger.info("strategy loaded: %s", strategy.name)
        return strategy.name

    def _get(self, strategy_id: str) -> StrategyModule:
        with self._lock:
            strategy = self._strategies.get(strategy_id)
        if strategy is None:
            raise MachineError(f"Strategy not found: {strategy_id}")
        return strategy

    def execute_strategy(self, strategy_id: str, context: StrategyContext) -> dict[str, Any]:
        """Validate then run one cycle.  Strategy failures come back as data.

        Blocks while max_concurrent executions are already in flight.
        """
        strategy = self._get(strategy_id)
        if strategy.status == "paused":
            return {"success": False, "errors": [f"Strategy {strategy_id} is paused"]}

        validation = strategy.validate(context)
        if not validation.get("valid"):
            return {"success": False, "errors": list(validation.get("errors", []))}

        with self._slots:
            with self._lock:
                self._active.add(strategy_id)
            try:
                result = strategy.execute(context)
            except Exception as exc:
                logger.exception("strategy execution failed: %s", strategy_id)
                return {"success": False, "error": str(exc)}
            finally:
                with self._lock:
                    self._active.discard(strategy_id)

        if context.activity_log is not None:
            context.activity_log.metric(
                "strategy.execution",
                1.0 if result.get("success") else 0.0,
                {"strategy": strategy_id},
            )
        return result

    def pause_strategy(self, strategy_id: str, reason: str = "") -> None:
        with self._lock:
            strategy = self._strategies.get(strategy_id)
        if strategy is not None:
            strategy.status = "paused"
            logger.info("strategy paused: %s (%s)", strategy_id, reason)

    def get_strategy_status(self, strategy_id: str) -> dict[str, Any] | None:
        with self._lock:
            strategy = self._strategies.get(strategy_id)
        return strategy.get_status() if strategy is not None else None

    def get_performance_metrics(self) -> dict[str, dict[str, Any]]:
        with self._lock:
            strategies = dict(self._strategies)
        return {sid: s.get_metrics() for sid, s in strategies.items()}

    def list_strategies(self) -> list[str]:
        with self._lock:
            return list(self._strategies)

    def active_strategies(self) -> set[str]:
        with self._lock:
            return set(self._active)
