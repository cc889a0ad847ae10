"""
return-to-source Main Entrypoint
Command-line tool that returns error-queue messages to their source queue
"""

import argparse
import sys
from typing import List, Optional

import structlog
import yaml

from returntosource.config.loader import load_config
from returntosource.config.settings import ReturnToSourceSettings
from returntosource.errors import ConfigurationError, ReturnToSourceError
from returntosource.observability.logging import bind_context, configure_logging
from returntosource.observability.metrics import start_metrics_server
from returntosource.observability.tracing import init_tracing
from returntosource.queues.base import QueueConnector
from returntosource.queues.memory import InMemoryConnector
from returntosource.queues.paths import AddressResolver
from returntosource.queues.redis_queue import RedisConnector
from returntosource.requeue.operator import RequeueOperator
from returntosource.requeue.output import OperatorOutput

logger = structlog.get_logger(__name__)

ALL_MESSAGES = "all"


def build_parser() -> argparse.ArgumentParser:
    """Command-line arguments"""
    parser = argparse.ArgumentParser(
        prog="return-to-source",
        description="Return messages from an error queue to the queue they failed from",
    )
    parser.add_argument(
        "-i",
        "--input-queue",
        help=(
            "Error queue address (queue@machine). Each message is moved in one "
            "transaction, so its source queue must live on the same queue server; "
            "map machines that share a Redis server with redis.machine_urls"
        ),
    )
    parser.add_argument(
        "-m",
        "--message-id",
        required=True,
        help=f"Id of the message to return, or '{ALL_MESSAGES}' for every message",
    )
    parser.add_argument(
        "--clustered",
        action="store_true",
        default=None,
        help="Error queue is clustered; skip the transactional check",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        help="Seconds to wait for a direct lookup before scanning headers",
    )
    parser.add_argument("--config", help="Path to YAML configuration file")
    parser.add_argument("--backend", choices=["redis", "memory"], help="Queue server type")
    return parser


def _overrides_from_args(args: argparse.Namespace) -> dict:
    queue = {}
    if args.input_queue:
        queue["input_queue"] = args.input_queue
    if args.clustered is not None:
        queue["clustered"] = args.clustered
    if args.timeout is not None:
        queue["receive_timeout_seconds"] = args.timeout

    overrides = {}
    if queue:
        overrides["queue"] = queue
    if args.backend:
        overrides["backend"] = args.backend
    return overrides


def build_connector(config: ReturnToSourceSettings) -> QueueConnector:
    """
    Create the queue connector for the configured backend

    Args:
        config: Loaded settings

    Returns:
        Queue connector
    """
    if config.backend == "memory":
        return InMemoryConnector()

    return RedisConnector(
        key_prefix=config.redis.key_prefix,
        socket_timeout=config.redis.socket_timeout_seconds,
        poll_interval=config.redis.poll_interval_ms / 1000,
    )


def build_resolver(config: ReturnToSourceSettings) -> AddressResolver:
    """Create the address resolver from settings"""
    url_template = config.redis.url_template
    if config.backend == "memory":
        url_template = "memory://{machine}"

    return AddressResolver(
        url_template=url_template,
        local_machine=config.queue.local_machine,
        machine_urls=config.redis.machine_urls,
    )


def run(
    argv: Optional[List[str]] = None,
    connector: Optional[QueueConnector] = None,
    output: Optional[OperatorOutput] = None,
) -> int:
    """
    Run one administrative action

    Args:
        argv: Command-line arguments (defaults to sys.argv)
        connector: Queue connector to use instead of the configured backend
        output: Operator output to use instead of stdout

    Returns:
        Process exit code: 0 on completion, 1 on a configuration error or
        an unhandled queue failure
    """
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.config, overrides=_overrides_from_args(args))
    except (ConfigurationError, FileNotFoundError, yaml.YAMLError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    configure_logging(
        log_level=config.observability.log_level,
        log_format=config.observability.log_format,
    )

    if config.observability.metrics_port:
        start_metrics_server(port=config.observability.metrics_port)

    if config.observability.enable_tracing:
        init_tracing()

    if not config.queue.input_queue:
        print("ERROR: No input queue given. Use --input-queue or RTS_QUEUE_INPUT_QUEUE.", file=sys.stderr)
        return 1

    bind_context(input_queue=config.queue.input_queue)

    owns_connector = connector is None
    connector = connector or build_connector(config)
    operator = RequeueOperator(
        connector=connector,
        resolver=build_resolver(config),
        output=output,
        receive_timeout=config.queue.receive_timeout_seconds,
        clustered=config.queue.clustered,
    )

    try:
        operator.set_input_queue(config.queue.input_queue)

        if args.message_id.lower() == ALL_MESSAGES:
            summary = operator.return_all()
            logger.info("Batch complete", attempted=summary.attempted, returned=summary.returned)
        else:
            operator.return_message_to_source_queue(args.message_id)

    except ConfigurationError as e:
        logger.error("Invalid queue configuration", error=str(e))
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    except ReturnToSourceError as e:
        logger.error("Requeue failed", error=str(e), error_type=type(e).__name__)
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    finally:
        operator.close()
        if owns_connector:
            connector.close()

    return 0


def main() -> None:
    """
    Main entrypoint
    """
    sys.exit(run())


if __name__ == "__main__":
    main()
