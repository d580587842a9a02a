"""Main entry point for StatusDeck."""

import asyncio
import json
import sys

import structlog
import uvicorn

from statusdeck.api import create_app
from statusdeck.config import get_config
from statusdeck.logging_setup import configure_logging
from statusdeck.service import StatusDeck


logger = structlog.get_logger(__name__)


async def run_cli_command(command: str, *args):
    """Run a one-off admin action without starting the pollers."""
    config = get_config()
    deck = StatusDeck(config)
    logger.info("Running CLI command", command=command, args=args)

    try:
        if command == "poll":
            integration_id = int(args[0])
            result = await deck.monitor.poll_now(integration_id, force="--force" in args)
            print(f"Poll status: {result.status}")
            print(f"Metrics: {len(result.metrics)}")
            print(f"Alerts triggered: {result.alerts}")

        elif command == "test":
            result = await deck.monitor.test_connection(int(args[0]))
            print(("✅ " if result.success else "❌ ") + result.message)

        elif command == "test-webhook":
            result = await deck.notifications.test_webhook(int(args[0]))
            print(("✅ " if result["success"] else "❌ ") + result["message"])

        elif command == "test-rule":
            result = await deck.notifications.test_rule(int(args[0]))
            print(("✅ " if result["success"] else "❌ ") + result["message"])

        elif command == "capabilities":
            caps = await deck.monitor.capabilities(int(args[0]))
            print(json.dumps([c.to_dict() for c in caps], indent=2, ensure_ascii=False))

        else:
            print(f"Unknown command: {command}")
            print("Available commands: poll <id> [--force], test <id>, test-webhook <id>, test-rule <id>, capabilities <id>")

    finally:
        await deck.stop()


def main():
    """Main entry point."""
    config = get_config()
    configure_logging(config.log_level)

    if len(sys.argv) < 2:
        deck = StatusDeck(config)
        app = create_app(deck)
        logger.info("Starting StatusDeck web server", host=config.host, port=config.port)
        uvicorn.run(app, host=config.host, port=config.port, log_level=config.log_level.lower())
    else:
        command = sys.argv[1]
        args = sys.argv[2:]
        asyncio.run(run_cli_command(command, *args))


if __name__ == "__main__":
    main()
