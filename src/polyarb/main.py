"""Main loop: fixed-interval scan ticker with graceful shutdown.

Usage:
    python -m polyarb
    python -m polyarb --interval 30 --strategies PRICE_IMBALANCE,TIME_BASED
    python -m polyarb --live
    python -m polyarb --once   # single diagnostic scan
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal

from polyarb.config import BotConfig, ConfigError, parse_strategies
from polyarb.pipeline import ArbitrageBot

logger = logging.getLogger(__name__)

BANNER = r"""
╔══════════════════════════════════════════════╗
║   polyarb - Polymarket Arbitrage Bot         ║
║   Imbalance · Cross-Market · Mean Reversion  ║
╚══════════════════════════════════════════════╝
"""

MIN_INTERVAL = 1.0  # seconds


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """커맨드라인 인자 파싱."""
    parser = argparse.ArgumentParser(
        prog="polyarb",
        description="Polymarket Arbitrage Bot",
    )
    parser.add_argument(
        "--interval", type=float, default=None,
        help="Scan interval in seconds (default: POLYARB_SCAN_INTERVAL or 10)",
    )
    parser.add_argument(
        "--live", action="store_true", default=False,
        help="Enable live trading (requires POLYMARKET_PRIVATE_KEY)",
    )
    parser.add_argument(
        "--strategies", type=str, default=None,
        help="Comma-separated strategies (PRICE_IMBALANCE,CROSS_MARKET,TIME_BASED)",
    )
    parser.add_argument(
        "--once", action="store_true", default=False,
        help="Run a single scan and exit",
    )
    return parser.parse_args(argv)


def apply_args(config: BotConfig, args: argparse.Namespace) -> BotConfig:
    """Override env settings with CLI flags."""
    if args.interval is not None:
        config.scan_interval = max(args.interval, MIN_INTERVAL)
    if args.live:
        config.dry_run = False
    if args.strategies:
        config.enabled_strategies = parse_strategies(args.strategies)
    return config


# ---------------------------------------------------------------------------
# Main loop
# ---------------------------------------------------------------------------


async def main_loop(bot: ArbitrageBot, interval: float, once: bool = False) -> None:
    """메인 루프: 매 tick마다 스캔 태스크 실행, 진행 중이면 건너뜀."""
    stop_event = asyncio.Event()

    def _handle_signal():
        print("\n⚡ Shutting down gracefully...")
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _handle_signal)
        except NotImplementedError:
            pass  # Windows

    tasks: set[asyncio.Task] = set()
    try:
        await bot.start()

        if once:
            summary = await bot.run_scan()
            logger.info("Single scan done: %s", summary)
            return

        while not stop_event.is_set():
            if bot.is_scanning:
                logger.debug("Scan in flight, tick skipped")
            else:
                task = asyncio.create_task(bot.run_scan())
                tasks.add(task)
                task.add_done_callback(tasks.discard)

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass  # next tick

        if tasks:
            logger.info("Waiting for in-flight scan to finish...")
            await asyncio.gather(*tasks, return_exceptions=True)
    finally:
        await bot.close()
        print(bot.session_summary())
        print("Risk summary:")
        print(json.dumps(bot.risk.risk_summary(), indent=2))


def cli_main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    args = parse_args(argv)

    try:
        config = apply_args(BotConfig.from_env(), args)
        config.validate()
    except (ConfigError, ValueError) as exc:
        logging.basicConfig(level=logging.ERROR)
        logger.error("%s", exc)
        raise SystemExit(1) from exc

    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    print(BANNER)
    print(config.summary())
    print("-" * 60)

    bot = ArbitrageBot.build(config)
    asyncio.run(main_loop(bot, config.scan_interval, once=args.once))
    print("Goodbye! 🤙")


if __name__ == "__main__":
    cli_main()
