"""jobline CLI"""

import argparse
import asyncio
import json
import sys

from jobline import __version__


async def run_worker(config_path: str) -> None:
    """설정 파일로 워커 실행 (SIGINT/SIGTERM으로 종료)"""
    import logging

    from common.logging import setup_logging
    from jobline.config import load_config
    from worker.main import Worker, install_signal_handlers, load_handlers

    config = load_config(config_path)
    setup_logging(**config.logging.model_dump())
    logger = logging.getLogger("jobline")

    worker = Worker(config.worker, transport_config=config.transport)
    load_handlers(worker, config.handlers)
    install_signal_handlers(worker)

    logger.info(f"Starting worker: handlers={worker.registry.types()}")
    await worker.run()


async def enqueue_job(config_path: str, job_type: str, args: str, queue: str | None) -> None:
    """잡 1개 인큐 후 결과 출력"""
    from client import Client, EnqueueOptions
    from jobline.config import load_config

    config = load_config(config_path)
    async with Client(transport_config=config.transport) as client:
        job = await client.enqueue(job_type, json.loads(args), EnqueueOptions(queue=queue))
    print(job.model_dump_json(indent=2) if job else "dropped")


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="jobline",
        description="jobline - 큐 기반 잡 프로토콜 워커 런타임"
    )
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # worker command
    worker_parser = subparsers.add_parser("worker", help="Run a worker")
    worker_parser.add_argument(
        "-c", "--config",
        default="config/worker.yaml",
        help="Config file path (default: config/worker.yaml)"
    )

    # enqueue command
    enqueue_parser = subparsers.add_parser("enqueue", help="Enqueue a job")
    enqueue_parser.add_argument("job_type", help="Dot-namespaced job type (e.g. email.send)")
    enqueue_parser.add_argument("args", nargs="?", default="[]", help="JSON args (default: [])")
    enqueue_parser.add_argument("-q", "--queue", default=None, help="Target queue")
    enqueue_parser.add_argument("-c", "--config", default="config/worker.yaml", help="Config file path")

    # version
    parser.add_argument("-v", "--version", action="version", version=f"%(prog)s {__version__}")

    args = parser.parse_args()

    try:
        if args.command == "worker":
            asyncio.run(run_worker(args.config))
        elif args.command == "enqueue":
            asyncio.run(enqueue_job(args.config, args.job_type, args.args, args.queue))
        else:
            parser.print_help()
    except KeyboardInterrupt:
        print("\nShutdown requested by user")
        sys.exit(130)


if __name__ == "__main__":
    main()
