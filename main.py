"""
jobline 통합 진입점

설정 파일로 Worker를 실행합니다.

사용법:
    python main.py                              # config/worker.yaml
    python main.py -c config/worker.yaml
"""

import sys
import os

# Windows 인코딩 설정 (cp949 -> UTF-8)
if sys.platform == "win32":
    os.environ["PYTHONUTF8"] = "1"

import argparse
import asyncio
import logging
from pathlib import Path

from common.logging import setup_logging
from jobline.config import load_config
from worker.main import Worker, install_signal_handlers, load_handlers

logger = logging.getLogger(__name__)


async def main(config_path: Path):
    """메인 함수"""
    config = load_config(config_path)

    # 로깅 설정
    setup_logging(**config.logging.model_dump())

    worker = Worker(config.worker, transport_config=config.transport)
    load_handlers(worker, config.handlers)
    install_signal_handlers(worker)

    try:
        logger.info("Starting Worker...")
        await worker.run()
    except asyncio.CancelledError:
        logger.info("Worker cancelled")
    finally:
        logger.info("Worker exited")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="jobline worker")
    parser.add_argument("-c", "--config", default=str(Path(__file__).parent / "config" / "worker.yaml"))
    args = parser.parse_args()

    print(f"Starting jobline worker: {args.config}")
    try:
        asyncio.run(main(Path(args.config)))
    except KeyboardInterrupt:
        print("\nShutdown requested by user")
