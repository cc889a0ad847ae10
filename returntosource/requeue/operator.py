"""
Requeue Operator
Returns messages from the error queue to the queue they failed from
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

import structlog

from returntosource.errors import (
    ConfigurationError,
    HeaderCodecError,
    ReceiveTimeoutError,
    ReturnToSourceError,
)
from returntosource.models.headers import Headers, add_or_increment_return_count, get_original_id
from returntosource.observability.logging import log_requeue_event
from returntosource.observability.metrics import (
    increment_failures,
    increment_lookup_timeouts,
    increment_outcome,
    increment_scanned,
    observe_requeue_duration,
)
from returntosource.observability.tracing import trace_requeue
from returntosource.queues.base import LookupAction, QueueConnector, QueueHandle
from returntosource.queues.codec import HeaderCodec
from returntosource.queues.paths import AddressResolver
from returntosource.queues.transaction import TransactionScope
from returntosource.requeue.output import OperatorOutput

logger = structlog.get_logger(__name__)

DEFAULT_RECEIVE_TIMEOUT = 5.0
PROGRESS_INTERVAL = 100


class RequeueOutcome(str, Enum):
    """How a requeue attempt ended"""

    RETURNED = "RETURNED"
    RETURNED_FROM_SCAN = "RETURNED_FROM_SCAN"
    MISSING_SOURCE_QUEUE = "MISSING_SOURCE_QUEUE"
    NOT_FOUND = "NOT_FOUND"
    FAILED = "FAILED"


@dataclass
class BatchSummary:
    """
    Result of return_all()

    Attributes:
        outcomes: Number of messages per outcome
        failures: (message_id, error) for every attempt that raised
    """

    outcomes: Dict[RequeueOutcome, int] = field(default_factory=dict)
    failures: List[Tuple[str, str]] = field(default_factory=list)

    def record(self, outcome: RequeueOutcome) -> None:
        self.outcomes[outcome] = self.outcomes.get(outcome, 0) + 1

    def record_failure(self, message_id: str, error: Exception) -> None:
        self.record(RequeueOutcome.FAILED)
        self.failures.append((message_id, str(error)))

    @property
    def attempted(self) -> int:
        return sum(self.outcomes.values())

    @property
    def returned(self) -> int:
        return self.outcomes.get(RequeueOutcome.RETURNED, 0) + self.outcomes.get(
            RequeueOutcome.RETURNED_FROM_SCAN, 0
        )

    def to_dict(self) -> Dict[str, int]:
        return {outcome.value.lower(): count for outcome, count in self.outcomes.items()}


class RequeueOperator:
    """
    Moves messages from an error queue back to their source queue

    The source queue is read from the FailedQ header. Each message moves
    under its own transaction, so at every instant it is in exactly one of
    the two queues.
    """

    progress_interval = PROGRESS_INTERVAL

    def __init__(
        self,
        connector: QueueConnector,
        resolver: Optional[AddressResolver] = None,
        codec: Optional[HeaderCodec] = None,
        output: Optional[OperatorOutput] = None,
        receive_timeout: float = DEFAULT_RECEIVE_TIMEOUT,
        clustered: bool = False,
    ):
        """
        Initialize requeue operator

        Args:
            connector: Opens queue handles from full paths
            resolver: Maps queue@machine addresses to full paths
            codec: Reads and writes message headers
            output: Operator-facing console output
            receive_timeout: Seconds to wait on a direct lookup before scanning
            clustered: Whether the error queue is clustered (skips the
                transactional check, which cannot be probed before failover)
        """
        self.connector = connector
        self.resolver = resolver or AddressResolver()
        self.codec = codec or HeaderCodec()
        self.output = output or OperatorOutput()
        self.receive_timeout = receive_timeout
        self.clustered = clustered
        self.queue: Optional[QueueHandle] = None

    def set_input_queue(self, address: str) -> None:
        """
        Configure the error queue to operate on

        Args:
            address: Error queue address (queue@machine)

        Raises:
            ConfigurationError: If the queue is not transactional and not clustered
            AddressParseError: If the address is malformed
            QueueAccessError: If the queue cannot be opened
        """
        path = self.resolver.to_full_path(self.resolver.parse(address))
        queue = self.connector.open(path)

        if not self.clustered and not queue.transactional:
            queue.close()
            raise ConfigurationError(f"Queue '{path}' must be transactional.")

        if self.queue is not None:
            self.queue.close()

        self.queue = queue
        logger.info("Input queue configured", queue=path, clustered=self.clustered)

    def return_all(self) -> BatchSummary:
        """
        Return every message currently in the error queue

        Works on a snapshot taken at call time. A failure on one message is
        reported and the batch moves on to the next one.

        Returns:
            Per-outcome summary of the batch
        """
        queue = self._require_queue()
        messages = queue.get_all_messages()
        summary = BatchSummary()

        logger.info("Returning all messages", queue=queue.path, count=len(messages))

        for message in messages:
            try:
                outcome = self.return_message_to_source_queue(message.id)
            except Exception as e:
                summary.record_failure(message.id, e)
                self.output.failure(message.id, str(e))
                continue

            summary.record(outcome)

        logger.info("Finished returning all messages", queue=queue.path, **summary.to_dict())
        return summary

    def return_message_to_source_queue(self, message_id: str) -> RequeueOutcome:
        """
        Return one message to the queue it failed from

        The message is received by id within the receive timeout. If that
        times out, every message in the error queue is scanned for one whose
        original id header matches, and the first match is returned.

        Args:
            message_id: Id of the message in the error queue, or its original id

        Returns:
            Outcome of the attempt

        Raises:
            QueueAccessError: On any queue failure other than the lookup timeout
        """
        queue = self._require_queue()
        span = trace_requeue(message_id, queue.path)
        start = time.perf_counter()

        try:
            outcome = self._return_by_id(queue, message_id)
            if outcome is None:
                outcome = self._return_by_header_scan(queue, message_id)

        except Exception as e:
            increment_failures(type(e).__name__)
            span.record_exception(e)
            log_requeue_event(
                logger,
                message_id=message_id,
                outcome=RequeueOutcome.FAILED.value,
                duration_ms=(time.perf_counter() - start) * 1000,
                error=str(e),
            )
            raise

        finally:
            observe_requeue_duration(time.perf_counter() - start)
            span.end()

        increment_outcome(outcome.value)
        log_requeue_event(
            logger,
            message_id=message_id,
            outcome=outcome.value,
            duration_ms=(time.perf_counter() - start) * 1000,
        )
        return outcome

    def _return_by_id(self, queue: QueueHandle, message_id: str) -> Optional[RequeueOutcome]:
        """Direct path; None means the lookup timed out"""
        with TransactionScope() as scope:
            try:
                message = queue.receive_by_id(message_id, self.receive_timeout, scope.transaction)
            except ReceiveTimeoutError:
                increment_lookup_timeouts()
                logger.info("Direct lookup timed out", message_id=message_id, timeout=self.receive_timeout)
                return None

            headers = self.codec.extract_headers(message)
            failed_q = headers.get(Headers.FAILED_Q)
            if failed_q is None:
                # Leaving without complete() rolls the receive back
                self.output.missing_source_queue()
                logger.warning("Message has no source queue header", message_id=message_id)
                return RequeueOutcome.MISSING_SOURCE_QUEUE

            with self._open_destination(failed_q) as destination:
                add_or_increment_return_count(headers)
                self.codec.save_headers(headers, message)
                destination.send(message, scope.transaction)

            scope.complete()

        self.output.success()
        return RequeueOutcome.RETURNED

    def _return_by_header_scan(self, queue: QueueHandle, message_id: str) -> RequeueOutcome:
        """
        Fallback path: find the first message whose original id matches

        The retry count header is not touched on this path.
        """
        self.output.no_message_found(message_id)

        examined = 0
        try:
            for candidate in queue.get_all_messages():
                examined += 1
                if examined % self.progress_interval == 0:
                    self.output.progress()

                try:
                    headers = self.codec.extract_headers(candidate)
                except HeaderCodecError as e:
                    logger.warning(
                        "Skipping message with unreadable headers",
                        lookup_id=candidate.lookup_id,
                        error=str(e),
                    )
                    continue

                original_id = get_original_id(headers)
                if not original_id or original_id != message_id:
                    continue

                self.output.found_message()

                failed_q = headers.get(Headers.FAILED_Q)
                if failed_q is None:
                    self.output.missing_source_queue()
                    return RequeueOutcome.MISSING_SOURCE_QUEUE

                # Scanning does not reserve the message: remove the exact
                # enumerated instance by lookup id in the same transaction
                with TransactionScope() as scope:
                    with self._open_destination(failed_q) as destination:
                        destination.send(candidate, scope.transaction)

                    queue.receive_by_lookup_id(
                        LookupAction.CURRENT, candidate.lookup_id, scope.transaction
                    )
                    scope.complete()

                self.output.success()
                return RequeueOutcome.RETURNED_FROM_SCAN

        finally:
            increment_scanned(examined)

        self.output.no_message_found_in_headers(message_id)
        return RequeueOutcome.NOT_FOUND

    def _open_destination(self, failed_q: str) -> QueueHandle:
        address = self.resolver.parse(failed_q)
        path = self.resolver.to_full_path(address)
        logger.debug("Opening source queue", address=str(address), path=path)
        return self.connector.open(path)

    def _require_queue(self) -> QueueHandle:
        if self.queue is None:
            raise ReturnToSourceError("Input queue not configured. Call set_input_queue() first.")
        return self.queue

    def close(self) -> None:
        """Close the input queue handle"""
        if self.queue is not None:
            self.queue.close()
            self.queue = None
