"""Demo strategy: simulates finding and analysing a research opportunity.

Makes no money.  Exists to exercise the compliance gate end to end.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from core.actions import Action, ActionContext
from core.compliance_engine import PolicyViolation
from strategies.base import StrategyContext, StrategyModule

logger = logging.getLogger(__name__)


class DemoResearchStrategy(StrategyModule):
    @property
    def name(self) -> str:
        return "demo-research"

    @property
    def description(self) -> str:
        return "Demo strategy that simulates research-based income opportunities"

    @property
    def estimated_time_to_first_dollar(self) -> str:
        return "demo-only"

    @property
    def automation_level(self) -> float:
        return 1.0

    def initialize(self, context: StrategyContext) -> None:
        super().initialize(context)
        logger.info("demo research strategy initialized")

    def validate(self, context: StrategyContext) -> dict[str, Any]:
        if context.compliance_engine is None:
            return {"valid": False, "errors": ["Compliance engine not available"]}
        return {"valid": True, "errors": []}

    def execute(self, context: StrategyContext) -> dict[str, Any]:
        logger.info("executing demo research strategy")
        engine = context.compliance_engine or self.compliance_engine
        try:
            if engine is not None:
                engine.check_action(
                    Action(type="research", description="Analyze public data for insights"),
                    ActionContext(platform="general"),
                )
        except PolicyViolation as exc:
            self._record_error(str(exc))
            return {"success": False, "error": str(exc)}

        opportunities = self._find_opportunities()
        if not opportunities:
            return {
                "success": True,
                "opportunities": 0,
                "earnings": 0,
                "message": "No opportunities found in this cycle",
            }

        analysis = self._analyze_opportunity(opportunities[0])
        self.actions += 1
        return {
            "success": True,
            "opportunities": len(opportunities),
            "analysis": analysis,
            "earnings": 0,
            "message": "Demo execution completed successfully",
        }

    def _find_opportunities(self) -> list[dict[str, Any]]:
        return [
            {
                "id": "demo-1",
                "type": "research",
                "title": "Demo Research Opportunity",
                "potential_value": 0,
            }
        ]

    def _analyze_opportunity(self, opportunity: dict[str, Any]) -> dict[str, Any]:
        return {
            "opportunity": opportunity["id"],
            "feasible": True,
            "estimated_effort": "low",
            "recommendation": "Demo analysis complete",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    def shutdown(self) -> None:
        super().shutdown()
        logger.info("demo research strategy shut down")
