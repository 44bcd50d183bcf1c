"""Entry point: load config → build machine → run strategies once or on an interval."""

from __future__ import annotations

import argparse
import dataclasses
import logging
import signal
import sys
import threading

from core.activity_log import parse_level
from core.config import load_config
from core.machine import create_money_machine
from core.strategy_manager import MachineError
from strategies.demo_research import DemoResearchStrategy
from strategies.github_sponsors import GitHubSponsorsStrategy

logger = logging.getLogger(__name__)

_STRATEGIES = {
    "demo-research": DemoResearchStrategy,
    "github-sponsors": GitHubSponsorsStrategy,
}


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Compliance-gated income strategy runner")
    parser.add_argument(
        "--once",
        action="store_true",
        help="run every selected strategy a single time and exit",
    )
    parser.add_argument(
        "--strategy",
        action="append",
        choices=sorted(_STRATEGIES),
        help="strategy to load (repeatable; default: all)",
    )
    parser.add_argument(
        "--lenient",
        action="store_true",
        help="record compliance failures without blocking the action",
    )
    parser.add_argument("--log-level", default=None, help="debug, info, warn or error")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    try:
        config = load_config()
    except EnvironmentError as exc:
        print(f"configuration error: {exc}", file=sys.stderr)
        return 1

    machine_cfg = config.machine
    if args.log_level:
        machine_cfg = dataclasses.replace(machine_cfg, log_level=args.log_level.lower())
    compliance_cfg = config.compliance
    if args.lenient:
        compliance_cfg = dataclasses.replace(compliance_cfg, strict_mode=False)
    config = dataclasses.replace(config, machine=machine_cfg, compliance=compliance_cfg)

    try:
        level = parse_level(config.machine.log_level)
    except ValueError as exc:
        print(f"configuration error: {exc}", file=sys.stderr)
        return 1
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stdout,
    )
    logger.info(
        "starting up (strict=%s, once=%s)", config.compliance.strict_mode, args.once
    )

    machine = create_money_machine(config)
    try:
        for name in args.strategy or sorted(_STRATEGIES):
            try:
                machine.load_strategy(_STRATEGIES[name]())
            except MachineError as exc:
                logger.error("could not load %s: %s", name, exc)

        if args.once:
            for sid, result in machine.run_once().items():
                logger.info("%s → %s", sid, result.get("message") or result.get("error") or result)
        else:
            stop = threading.Event()
            signal.signal(signal.SIGINT, lambda *_: stop.set())
            signal.signal(signal.SIGTERM, lambda *_: stop.set())
            machine.start()
            stop.wait()
            machine.stop()

        report = machine.get_earnings_report()
        logger.info("─── done ─── total earnings: $%.2f", report["total_earnings"])
        logger.info(
            "compliance violations: %d",
            machine.compliance_engine.generate_compliance_report().total_violations,
        )
    finally:
        machine.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
