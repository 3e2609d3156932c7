#!/usr/bin/env python3
"""
jobbridge CLI.

Usage:
    jobbridge [--config PATH] [-v] topology
    jobbridge [--config PATH] [-v] start <resource> [--input key=value ...]
    jobbridge [--config PATH] [-v] worker [--resource <resource>] [--input key=value ...]
    jobbridge [--config PATH] [-v] consume

Examples:
    # Serve 'put' jobs, deploying and starting one vacation instance first
    jobbridge worker --resource resources/vacation.yaml --input key=k1 --input value=v1

    # Complete jobs whose messages come back on the topic
    jobbridge consume
"""

import argparse
import asyncio
import logging
import signal
import sys
from typing import Any, Dict, List, Optional

from pika.exceptions import AMQPConnectionError

from .bridge import BridgeContext, ConsumerLoop, JobHandler
from .broker import Producer, Subscription
from .config import DEFAULT_CONFIG_PATH, BridgeConfig
from .engine import BlockingEngineClient, EngineClient, JobWorker, create_process_worker
from .errors import JobBridgeError

logger = logging.getLogger("jobbridge")


def setup_logging(verbose: bool = False):
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s" if verbose else "%(asctime)s %(levelname)s %(message)s",
    )
    # Quiet down noisy loggers
    if not verbose:
        logging.getLogger("pika").setLevel(logging.WARNING)
        logging.getLogger("temporalio").setLevel(logging.WARNING)


def parse_input_params(input_args: Optional[List[str]]) -> Dict[str, Any]:
    """Parse --input key=value arguments into a dictionary."""
    params: Dict[str, Any] = {}
    for arg in input_args or []:
        if "=" not in arg:
            raise ValueError(f"Invalid input format '{arg}', expected key=value")
        key, value = arg.split("=", 1)
        if value.lower() == "true":
            params[key] = True
        elif value.lower() == "false":
            params[key] = False
        else:
            try:
                params[key] = int(value)
            except ValueError:
                try:
                    params[key] = float(value)
                except ValueError:
                    params[key] = value
    return params


# =============================================================================
# Commands
# =============================================================================

async def show_topology(config: BridgeConfig) -> None:
    async with EngineClient(config.engine) as engine:
        print(await engine.topology())


async def start_instance(config: BridgeConfig, resource: str, variables: Dict[str, Any]) -> None:
    """Deploy a process definition and start one instance of it."""
    async with EngineClient(config.engine) as engine:
        deployment = engine.deploy_process(resource)
        process_id = deployment.processes[0].bpmn_process_id
        instance = await engine.create_process_instance(
            process_id,
            variables,
            job_timeout_seconds=config.worker.timeout_seconds,
        )
        print(f"Process instance {instance.key} of {process_id} started (workflow_id={instance.workflow_id})")


async def run_worker(
    config: BridgeConfig,
    resource: Optional[str] = None,
    variables: Optional[Dict[str, Any]] = None,
) -> None:
    """Host process instances and serve jobs until interrupted."""
    engine = await EngineClient(config.engine).connect()
    producer: Optional[Producer] = None
    try:
        logger.info(f"Topology: {await engine.topology()}")

        producer = Producer(config.broker, source=f"jobbridge/{config.worker.name}").connect()
        context = BridgeContext(config=config, producer=producer)

        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop.set)

        job_worker = JobWorker(
            engine.client,
            config.worker.job_type,
            JobHandler(context),
            name=config.worker.name,
            max_jobs_active=config.worker.max_jobs_active,
            poll_interval_seconds=config.worker.poll_interval_seconds,
            timeout_seconds=config.worker.timeout_seconds,
        )

        async with create_process_worker(engine.client, config.engine):
            if resource:
                deployment = engine.deploy_process(resource)
                await engine.create_process_instance(
                    deployment.processes[0].bpmn_process_id,
                    variables,
                    job_timeout_seconds=config.worker.timeout_seconds,
                )
            await job_worker.run(stop)
    finally:
        try:
            if producer is not None:
                producer.flush(config.worker.flush_timeout_seconds)
                producer.close()
        finally:
            await engine.close()


def run_consumer(config: BridgeConfig) -> None:
    """Complete jobs from consumed records until interrupted."""
    engine = BlockingEngineClient(
        config.engine,
        completion_timeout=config.consumer.completion_timeout_seconds,
    ).connect()
    try:
        logger.info(f"Topology: {engine.topology()}")
        context = BridgeContext(config=config, completer=engine)

        def signal_handler(sig, frame):
            logger.info("Received shutdown signal")
            context.stop.set()

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

        subscription = Subscription(config.broker).open()
        ConsumerLoop(context, subscription).run()
    finally:
        engine.close()


# =============================================================================
# Entry point
# =============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="jobbridge",
        description="Bridge workflow engine jobs to a message broker and back",
    )
    parser.add_argument("--config", default=DEFAULT_CONFIG_PATH, help="Path to YAML config")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("topology", help="Show engine cluster topology")

    start = subparsers.add_parser("start", help="Deploy a process and start an instance")
    start.add_argument("resource", help="Process definition file")
    start.add_argument("--input", "-i", action="append", help="Instance variable key=value")

    worker = subparsers.add_parser("worker", help="Run the process host and the job worker")
    worker.add_argument("--resource", help="Deploy this process and start an instance first")
    worker.add_argument("--input", "-i", action="append", help="Instance variable key=value")

    subparsers.add_parser("consume", help="Run the consumer loop")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)

    try:
        config = BridgeConfig.load(args.config)
        variables = parse_input_params(getattr(args, "input", None))

        if args.command == "topology":
            asyncio.run(show_topology(config))
        elif args.command == "start":
            asyncio.run(start_instance(config, args.resource, variables))
        elif args.command == "worker":
            asyncio.run(run_worker(config, args.resource, variables))
        elif args.command == "consume":
            run_consumer(config)
    except (JobBridgeError, AMQPConnectionError, RuntimeError, OSError, ValueError) as e:
        logger.error(f"{args.command} failed: {e}")
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted by user.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
