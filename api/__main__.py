"""Command line interface for running the API server."""
import argparse
import asyncio
import logging
import signal

import uvicorn

import realtime
from config import settings_conf
from database import init_db, close as db_close

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

class UvicornServer:
    """Wrapper for running uvicorn with proper lifecycle management."""

    def __init__(self, app_path: str = "api:app", host: str = None, port: int = None):
        self.config = uvicorn.Config(
            app_path,
            host=host or settings_conf['api_host'],
            port=port or settings_conf['api_port'],
            log_level="info"
        )
        self.server = uvicorn.Server(self.config)

    async def run(self):
        await self.server.serve()

    def stop(self):
        """Ask the server to exit."""
        self.server.should_exit = True

async def main(host: str = None, port: int = None, force_recreate: bool = False):
    """Initialize the database and serve the API until interrupted."""
    server = UvicornServer(host=host, port=port)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, server.stop)

    try:
        logger.info("Initializing database...")
        await init_db(force_recreate=force_recreate)

        logger.info(f"Starting API on {server.config.host}:{server.config.port}")
        await server.run()
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        raise
    finally:
        logger.info("Closing realtime connection...")
        await realtime.close()

        logger.info("Closing database connections...")
        await db_close()

        logger.info("Cleanup complete.")

if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run the BrillPrime API server")
    parser.add_argument("--host", help="Bind address (default from settings)")
    parser.add_argument("--port", type=int, help="Port (default from settings)")
    parser.add_argument(
        "--force-recreate",
        action="store_true",
        help="Drop and recreate all tables before starting"
    )
    args = parser.parse_args()

    asyncio.run(main(args.host, args.port, args.force_recreate))
