"""
Command line entry point

Examples:
  # React to large buys of the tracked token
  liquidator --config config/config.yml liquidate

  # Run fixed volume rounds
  liquidator --config config/config.yml rounds
"""

import argparse
import asyncio
import signal
import sys
from typing import List, Optional, Union

from liquidator.bot import LiquidationBot, RoundTradingBot
from liquidator.core.config import ConfigurationManager
from liquidator.core.errors import ConfigurationError
from liquidator.core.logger import get_logger, setup_logging


logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="liquidator",
        description="Solana auto-liquidation bot",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__.split("Examples:", 1)[1] if __doc__ else None
    )
    parser.add_argument(
        "--config",
        default="config/config.yml",
        help="Path to config.yml"
    )
    parser.add_argument(
        "command",
        nargs="?",
        choices=["liquidate", "rounds"],
        default="liquidate",
        help="Which bot to run (default: liquidate)"
    )
    return parser


async def run_bot(bot: Union[LiquidationBot, RoundTradingBot]) -> None:
    """Run a bot until it finishes or SIGINT/SIGTERM arrives"""
    loop = asyncio.get_running_loop()

    def _request_stop(signum: int) -> None:
        logger.info("shutdown_requested", signal=signal.Signals(signum).name)
        asyncio.ensure_future(bot.stop())

    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, _request_stop, signum)
        except NotImplementedError:
            # add_signal_handler is unavailable on Windows event loops
            signal.signal(signum, lambda s, _frame: _request_stop(s))

    await bot.start()


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        bot_section = "rounds" if args.command == "rounds" else "liquidation"
        config = ConfigurationManager(args.config).load_config(bot_section=bot_section)
        setup_logging(
            level=config.log_config.level,
            format=config.log_config.format,
            output_file=config.log_config.output_file
        )
        if args.command == "rounds":
            bot = RoundTradingBot(config)
        else:
            bot = LiquidationBot(config)
    except (ConfigurationError, FileNotFoundError, ValueError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    logger.info("bot_starting", command=args.command, config=args.config)

    try:
        asyncio.run(run_bot(bot))
    except KeyboardInterrupt:
        logger.info("bot_interrupted")

    return 0


if __name__ == "__main__":
    sys.exit(main())
