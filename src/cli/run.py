import argparse
import asyncio
import json
import logging
import time

from core.errors import ValidationError
from services.config import load_config
from services.logging import setup_logging
from workflows.scan_factory import create_orchestrator


async def main(fid: int, config_path: str | None = None) -> int:
    start_time = time.perf_counter()
    config = load_config(config_path)
    setup_logging(config.LOG_LEVEL)
    logger = logging.getLogger(__name__)

    logger.info(f"Starting following scan for FID {fid}")

    orchestrator = create_orchestrator(config)
    try:
        summary = await orchestrator.scan(fid)
    except ValidationError as e:
        logger.error(f"Invalid FID: {e}")
        return 2

    print(json.dumps(summary, indent=2))

    end_time = time.perf_counter()
    logger.info(f"Total time: {end_time - start_time}")
    return 1 if "error" in summary else 0


def cli() -> None:
    parser = argparse.ArgumentParser(description="Scan the accounts an identity follows")
    parser.add_argument("fid", type=int, help="Identity ID to scan")
    parser.add_argument("--config", default=None, help="Path to config.yml")
    args = parser.parse_args()

    raise SystemExit(asyncio.run(main(args.fid, args.config)))


if __name__ == "__main__":
    cli()
