"""
Chamber Link - Main Entry Point

    python src/main.py                   # discover the backend and follow its status stream
    python src/main.py --synthetic       # same, against the in-process backend double
    python src/main.py --dev-backend     # serve the synthetic backend over HTTP/websocket
"""

import argparse
import asyncio
import signal
import sys
import logging
from pathlib import Path

import uvicorn

from config_loader import load_config, setup_logging

logger = logging.getLogger(__name__)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Hyperbaric chamber backend link")
    parser.add_argument("--config", help="YAML config path (default: $CHAMBER_LINK_CONFIG or config/config.yaml)")
    parser.add_argument("--synthetic", action="store_true",
                        help="use the in-process synthetic backend instead of the network")
    parser.add_argument("--dev-backend", action="store_true",
                        help="serve the synthetic backend with uvicorn instead of running the link")
    return parser.parse_args(argv)


async def run_link(config):
    """Run the link until SIGINT/SIGTERM"""
    from services.chamber_link import ChamberLink

    link = ChamberLink(config=config)
    loop = asyncio.get_running_loop()

    def signal_handler(signum):
        logger.info(f"Received signal {signum}, shutting down...")
        asyncio.create_task(link.stop())

    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, signal_handler, signum)
        except NotImplementedError:
            pass  # Windows: KeyboardInterrupt still stops asyncio.run

    try:
        await link.run_forever()
    finally:
        await link.stop()


async def run_dev_backend(config):
    """Start the FastAPI development backend"""
    from api.main_api import DevBackendAPI

    api = DevBackendAPI(config)
    dev = config['dev_backend']
    server = uvicorn.Server(uvicorn.Config(
        api.app,
        host=dev['host'],
        port=dev['port'],
        log_level="info",
        access_log=False  # We handle our own logging
    ))

    logger.info(f"Starting development backend on {dev['host']}:{dev['port']}")
    logger.info(f"API documentation: http://localhost:{dev['port']}/docs")
    await server.serve()


async def main(argv=None):
    """Main entry point"""
    args = parse_args(argv)

    try:
        config = load_config(args.config)
        if args.synthetic:
            config['dev_backend']['synthetic'] = True
        setup_logging(config)

        if args.dev_backend:
            await run_dev_backend(config)
        else:
            await run_link(config)

    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt")
    except Exception as e:
        logger.error(f"Chamber link failed: {e}")
        return 1

    return 0


def cli():
    # Ensure logs directory exists
    Path("logs").mkdir(exist_ok=True)

    try:
        exit_code = asyncio.run(main())
        sys.exit(exit_code)
    except KeyboardInterrupt:
        print("\nChamber link stopped by user")
        sys.exit(0)


if __name__ == "__main__":
    cli()
