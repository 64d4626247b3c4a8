"""
Run script for the Following Scanner API.
Starts the Quart app under hypercorn.
Can be run from project root or src directory.
"""
import os
import sys
import asyncio
import argparse
import logging
from pathlib import Path

# This script is at: <project_root>/src/api/run_api.py
script_path = Path(__file__).resolve()
src_path = script_path.parent.parent  # src/
project_root = src_path.parent  # project root

# Add src to path for imports
sys.path.insert(0, str(src_path))

# Change to project root directory so relative paths work consistently
os.chdir(project_root)

from dotenv import load_dotenv
from hypercorn.asyncio import serve
from hypercorn.config import Config as HypercornConfig

from services.config import load_config
from services.logging import setup_logging

# Load environment variables from project root
load_dotenv(project_root / '.env')

logger = logging.getLogger(__name__)


def run_server(host: str = '0.0.0.0', port: int = 5000, debug: bool = False):
    """Run the web server."""
    from api.app import app

    logger.info(f"Starting Following Scanner API on http://{host}:{port}")

    config = HypercornConfig()
    config.bind = [f"{host}:{port}"]
    config.use_reloader = debug
    config.accesslog = '-'
    config.errorlog = '-'

    asyncio.run(serve(app, config))


def main():
    parser = argparse.ArgumentParser(description='Following Scanner API')
    parser.add_argument('--host', default='0.0.0.0',
                        help='Host to bind to (default: 0.0.0.0)')
    parser.add_argument('--port', type=int, default=5000,
                        help='Port to bind to (default: 5000)')
    parser.add_argument('--debug', action='store_true',
                        help='Enable debug mode')

    args = parser.parse_args()

    setup_logging(logging.DEBUG if args.debug else load_config().LOG_LEVEL)
    logger.info(f"Project root: {project_root}")

    run_server(host=args.host, port=args.port, debug=args.debug)


if __name__ == '__main__':
    main()
