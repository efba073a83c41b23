"""
CLI entry point for TierPulse.

Usage:
    python main.py simulate --ops 2000 --keys 200 --strategy write_behind
    python main.py simulate --tiers 2 --max-bytes 4096 --seed 7
    python main.py config
"""

import argparse
import json
import logging
import random
import sys
from datetime import timedelta

from tierpulse.cache import CacheOrchestrator, MemoryCacheLayer, WriteStrategy
from tierpulse.config import get_settings
from tierpulse.exceptions import TierPulseException
from tierpulse.observability import DataPulseMonitor

_TIER_NAMES = ["L1-Memory", "L2-Redis", "L3-Mongo"]
_SPARK_CHARS = " .:-=+*#%@"

# Builtin LogRecord attributes; anything else came in via ``extra``.
_RECORD_ATTRS = set(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


class _JsonFormatter(logging.Formatter):
    """One JSON object per line, including ``extra`` fields."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in vars(record).items():
            if key not in _RECORD_ATTRS:
                payload[key] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def configure_logging() -> None:
    """Configure the root logger from ``settings.logging``."""
    cfg = get_settings().logging
    handler = logging.StreamHandler(sys.stderr)
    if cfg.format == "json":
        handler.setFormatter(_JsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
    logging.basicConfig(level=cfg.level.upper(), handlers=[handler], force=True)


def _sparkline(samples) -> str:
    top = len(_SPARK_CHARS) - 1
    return "".join(_SPARK_CHARS[int(round(float(s) * top))] for s in samples)


def cmd_simulate(args):
    """Drive a random workload through an orchestrator and report."""
    if not 1 <= args.tiers <= len(_TIER_NAMES):
        print(f"Error: --tiers must be between 1 and {len(_TIER_NAMES)}")
        sys.exit(1)

    layers = [
        MemoryCacheLayer(
            max_size_bytes=args.max_bytes * (10 ** i),
            name=_TIER_NAMES[i],
            priority=i + 1,
            expected_latency=timedelta(microseconds=100 * (10 ** i)),
        )
        for i in range(args.tiers)
    ]
    rng = random.Random(args.seed)
    monitor = DataPulseMonitor()
    tick = get_settings().monitor.tick_interval_ms / 1000.0

    with CacheOrchestrator(layers, write_strategy=args.strategy) as orchestrator:
        monitor.connect(orchestrator)
        for i in range(args.ops):
            key = f"key-{rng.randrange(args.keys)}"
            roll = rng.random()
            if roll < 0.6:
                orchestrator.get_or_create(key, lambda: "v" * rng.randint(1, 64))
            elif roll < 0.9:
                orchestrator.set(key, f"value-{i}")
            else:
                orchestrator.remove(key)
            monitor.update(tick)

        orchestrator.wait_for_background_writes(timeout=5.0)
        monitor.disconnect(orchestrator)

        report = {
            "write_strategy": orchestrator.write_strategy.value,
            "layers": [info.model_dump(mode="json") for info in orchestrator.get_layer_info()],
            "statistics": {
                name: stats.model_dump()
                for name, stats in orchestrator.statistics.get_all_stats().items()
            },
            "background_failures": orchestrator.background_failures,
        }

    print(json.dumps(report, indent=2))
    print("\n--- Activity waveforms (oldest -> newest) ---")
    width = min(monitor.buffer_size, 64)
    for tier in range(1, args.tiers + 1):
        samples = monitor.get_ordered_waveform(tier)[-width:]
        print(f"  {_TIER_NAMES[tier - 1]:<10} |{_sparkline(samples)}|")


def cmd_config(args):
    """Print the effective settings."""
    print(json.dumps(get_settings().to_dict(), indent=2))


def main():
    parser = argparse.ArgumentParser(
        description="TierPulse - Multi-tier cache orchestration"
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # simulate
    p_sim = subparsers.add_parser("simulate", help="Run a synthetic workload")
    p_sim.add_argument("--ops", type=int, default=2000)
    p_sim.add_argument("--keys", type=int, default=200)
    p_sim.add_argument(
        "--strategy",
        choices=[s.value for s in WriteStrategy],
        default=None,
        help="Write strategy (defaults to config)",
    )
    p_sim.add_argument("--tiers", type=int, default=3)
    p_sim.add_argument("--max-bytes", type=int, default=16384, help="L1 byte budget")
    p_sim.add_argument("--seed", type=int, default=None)

    # config
    subparsers.add_parser("config", help="Show effective settings")

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    configure_logging()

    commands = {
        "simulate": cmd_simulate,
        "config": cmd_config,
    }
    try:
        commands[args.command](args)
    except TierPulseException as exc:
        print(f"Error: {exc}")
        sys.exit(1)


if __name__ == "__main__":
    main()
