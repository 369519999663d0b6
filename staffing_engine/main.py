"""
Staffing engine service entry point

Usage: python -m staffing_engine.main [environment]

The environment selects ``config/engine_{environment}.yaml``; environment
variables still override it.
"""

import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import List, Optional

from aiohttp import web

from .app import create_app
from .config import EngineConfig

logger = logging.getLogger(__name__)

QUIET_LOGGERS = ('aiohttp.access', 'aiohttp.server', 'asyncio')


def setup_logging(config: EngineConfig):
    """Log to stdout, and to ``logging.file`` when one is configured"""
    level = getattr(logging, str(config.logging.level).upper(), logging.INFO)

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if config.logging.file:
        log_path = Path(config.logging.file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, encoding='utf-8'))

    logging.basicConfig(level=level, format=config.logging.format, handlers=handlers, force=True)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def _wait_for_stop_signal() -> asyncio.Event:
    stop = asyncio.Event()
    if sys.platform == 'win32':
        return stop

    def _stop(sig: signal.Signals):
        logger.info(f"Received {sig.name}")
        stop.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, _stop, sig)
    return stop


async def serve(config: EngineConfig):
    """Run the HTTP service until SIGTERM or SIGINT"""
    app = await create_app(config)
    runner = web.AppRunner(app)
    await runner.setup()

    try:
        site = web.TCPSite(runner, config.service.host, config.service.port)
        await site.start()
        base = f"http://{config.service.host}:{config.service.port}"
        logger.info(f"Staffing engine listening on {base} (dashboards under {base}/api/v1/dashboards)")

        await _wait_for_stop_signal().wait()
    finally:
        logger.info("Stopping staffing engine")
        await runner.cleanup()


async def main(argv: Optional[List[str]] = None) -> int:
    """Load configuration and serve; returns the process exit code"""
    args = sys.argv[1:] if argv is None else argv
    environment = args[0] if args else "development"

    config = EngineConfig(environment=environment)
    setup_logging(config)
    logger.info(f"Starting staffing engine ({environment})")

    if not config.validate():
        logger.error("Refusing to start with an invalid configuration")
        return 1

    try:
        await serve(config)
    except OSError as e:
        logger.error(f"Could not bind {config.service.host}:{config.service.port}: {e}")
        return 1
    return 0


def run():
    """Console script entry point"""
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        print("\nShutdown requested by user")


if __name__ == '__main__':
    run()
