"""
Unit tests for the requeue operator
Tests direct and header-scan returns against the in-memory queue server
"""

import pytest

from returntosource.errors import (
    ConfigurationError,
    HeaderCodecError,
    QueueAccessError,
    QueueErrorCode,
    ReturnToSourceError,
)
from returntosource.models.headers import Headers
from returntosource.models.message import Message
from returntosource.queues.base import BrokeredQueue
from returntosource.requeue.operator import RequeueOperator, RequeueOutcome
from returntosource.requeue.output import FOUND_MESSAGE_LINE, MISSING_SOURCE_QUEUE_LINE

COUNT = Headers.RETURN_TO_SOURCE_QUEUE_COUNT


def _fail_send_to(queue_name):
    """BrokeredQueue.send replacement that fails for one queue"""
    original_send = BrokeredQueue.send

    def send(self, message, transaction=None):
        if self.name == queue_name:
            raise QueueAccessError("Insufficient resources", QueueErrorCode.CONNECTION, queue=self.path)
        return original_send(self, message, transaction)

    return send


class TestConfiguration:
    """Test input queue configuration"""

    def test_non_transactional_queue_rejected(self, connector, resolver, broker):
        """Test that a non-transactional input queue raises ConfigurationError"""
        broker.create_queue("plain", transactional=False)
        operator = RequeueOperator(connector=connector, resolver=resolver)

        with pytest.raises(ConfigurationError, match="must be transactional"):
            operator.set_input_queue("plain@localhost")

        assert operator.queue is None

    def test_clustered_queue_skips_transactional_check(self, connector, resolver, broker):
        """Test that clustered mode accepts a non-transactional queue"""
        broker.create_queue("plain", transactional=False)
        operator = RequeueOperator(connector=connector, resolver=resolver, clustered=True)

        operator.set_input_queue("plain@localhost")

        assert operator.queue is not None
        assert operator.queue.path == "memory://localhost#plain"

    def test_missing_input_queue_is_a_queue_error(self, connector, resolver, broker):
        """Test that an unknown input queue raises QueueAccessError"""
        operator = RequeueOperator(connector=connector, resolver=resolver)

        with pytest.raises(QueueAccessError) as exc_info:
            operator.set_input_queue("nowhere@localhost")

        assert exc_info.value.error_code is QueueErrorCode.QUEUE_NOT_FOUND

    def test_operations_require_input_queue(self, connector, resolver):
        """Test that requeue operations fail before set_input_queue()"""
        operator = RequeueOperator(connector=connector, resolver=resolver)

        with pytest.raises(ReturnToSourceError, match="not configured"):
            operator.return_all()

    def test_default_receive_timeout_is_five_seconds(self, connector):
        """Test the default direct lookup timeout"""
        assert RequeueOperator(connector=connector).receive_timeout == 5.0


class TestDirectReturn:
    """Test returning a message found by its error-queue id"""

    def test_message_moved_to_failed_queue(self, operator, broker, enqueue, failed_headers, codec, output):
        """Test that a message is moved to the queue named in FailedQ"""
        stored = enqueue(failed_headers(), body=b"order #1")

        outcome = operator.return_message_to_source_queue(stored.id)

        assert outcome is RequeueOutcome.RETURNED
        assert broker.list_messages("error") == []

        returned = broker.list_messages("orders")
        assert [m.body for m in returned] == [b"order #1"]

        headers = codec.extract_headers(returned[0])
        assert headers[Headers.FAILED_Q] == "orders@localhost"
        assert headers[Headers.MESSAGE_ID] == "original-1"
        assert headers[COUNT] == "1"
        assert output.lines == ["Success."]

    def test_message_properties_preserved(self, operator, broker, connector, codec, failed_headers):
        """Test that body and message properties survive the move"""
        message = Message(
            body=b"payload",
            extension=codec.encode(failed_headers()),
            label="OrderPlaced",
            correlation_id="corr-9",
            app_specific=7,
            recoverable=True,
            time_to_be_received=3600.0,
            response_queue="replies@localhost",
        )
        connector.open("memory://localhost#error").send(message)
        stored = broker.list_messages("error")[0]

        operator.return_message_to_source_queue(stored.id)

        returned = broker.list_messages("orders")[0]
        assert returned.label == "OrderPlaced"
        assert returned.correlation_id == "corr-9"
        assert returned.app_specific == 7
        assert returned.time_to_be_received == 3600.0
        assert returned.response_queue == "replies@localhost"

    def test_return_count_reaches_two_after_two_direct_returns(
        self, operator, broker, connector, enqueue, failed_headers, codec
    ):
        """Test the counter across two failures and two returns"""
        stored = enqueue(failed_headers())
        operator.return_message_to_source_queue(stored.id)

        # The message fails again and lands back in the error queue
        orders = connector.open("memory://localhost#orders")
        error = connector.open("memory://localhost#error")
        failed_again = orders.receive_by_id(broker.list_messages("orders")[0].id, timeout=0.1)
        error.send(failed_again)
        second_id = broker.list_messages("error")[0].id

        operator.return_message_to_source_queue(second_id)

        returned = broker.list_messages("orders")
        assert len(returned) == 1
        assert codec.extract_headers(returned[0])[COUNT] == "2"

    def test_non_integer_count_left_unchanged(self, operator, broker, enqueue, failed_headers, codec):
        """Test that a non-integer return count is sent unchanged"""
        stored = enqueue(failed_headers(**{COUNT: "lots"}))

        operator.return_message_to_source_queue(stored.id)

        assert codec.extract_headers(broker.list_messages("orders")[0])[COUNT] == "lots"

    def test_message_without_failed_queue_header_is_left_in_place(
        self, operator, broker, enqueue, codec, output
    ):
        """Test that a message without FailedQ stays in the error queue"""
        stored = enqueue({Headers.MESSAGE_ID: "original-1"})

        outcome = operator.return_message_to_source_queue(stored.id)

        assert outcome is RequeueOutcome.MISSING_SOURCE_QUEUE
        remaining = broker.list_messages("error")
        assert [m.id for m in remaining] == [stored.id]
        assert COUNT not in codec.extract_headers(remaining[0])
        assert broker.list_messages("orders") == []
        assert output.lines == [MISSING_SOURCE_QUEUE_LINE]

    def test_send_failure_leaves_message_in_error_queue(
        self, operator, broker, enqueue, failed_headers, codec, monkeypatch
    ):
        """Test that a failed send rolls back the receive"""
        stored = enqueue(failed_headers())
        monkeypatch.setattr(BrokeredQueue, "send", _fail_send_to("orders"))

        with pytest.raises(QueueAccessError):
            operator.return_message_to_source_queue(stored.id)

        remaining = broker.list_messages("error")
        assert [m.id for m in remaining] == [stored.id]
        assert COUNT not in codec.extract_headers(remaining[0])
        assert broker.list_messages("orders") == []

    def test_missing_destination_queue_leaves_message_in_error_queue(
        self, operator, broker, enqueue, failed_headers
    ):
        """Test that an unknown destination queue leaves the message in place"""
        stored = enqueue(failed_headers(failed_q="deleted@localhost"))

        with pytest.raises(QueueAccessError) as exc_info:
            operator.return_message_to_source_queue(stored.id)

        assert exc_info.value.error_code is QueueErrorCode.QUEUE_NOT_FOUND
        assert [m.id for m in broker.list_messages("error")] == [stored.id]

    def test_other_receive_failures_propagate_without_scanning(self, operator, enqueue, output, monkeypatch):
        """Test that receive errors other than a timeout propagate"""
        def broken_receive(message_id, timeout, transaction=None):
            raise QueueAccessError("Connection refused", QueueErrorCode.CONNECTION)

        monkeypatch.setattr(operator.queue, "receive_by_id", broken_receive)

        with pytest.raises(QueueAccessError) as exc_info:
            operator.return_message_to_source_queue("anything")

        assert exc_info.value.error_code is QueueErrorCode.CONNECTION
        assert output.writes == []

    def test_unreadable_headers_propagate_and_leave_message(self, operator, broker, connector):
        """Test that unreadable headers on the direct path propagate"""
        connector.open("memory://localhost#error").send(Message(body=b"x", extension=b"garbage"))
        stored = broker.list_messages("error")[0]

        with pytest.raises(HeaderCodecError):
            operator.return_message_to_source_queue(stored.id)

        assert [m.id for m in broker.list_messages("error")] == [stored.id]


class TestHeaderScanReturn:
    """Test the fallback scan used when the direct lookup times out"""

    @pytest.mark.parametrize("position", [0, 1, 42, 98, 99, 100, 150, 199, 250])
    def test_scan_selects_matching_position(self, operator, broker, enqueue, failed_headers, output, position):
        """Test that the scan returns the match and emits one dot per hundred examined"""
        total = position + 25
        for index in range(total):
            original_id = "target" if index == position else f"other-{index}"
            enqueue(failed_headers(original_id=original_id), body=f"message {index}".encode())

        outcome = operator.return_message_to_source_queue("target")

        assert outcome is RequeueOutcome.RETURNED_FROM_SCAN
        assert [m.body for m in broker.list_messages("orders")] == [f"message {position}".encode()]
        remaining = broker.list_messages("error")
        assert len(remaining) == total - 1
        assert f"message {position}".encode() not in [m.body for m in remaining]

        found_at = output.writes.index(FOUND_MESSAGE_LINE + "\n")
        assert output.writes[:found_at].count(".") == (position + 1) // 100
        assert output.writes.count(".") == (position + 1) // 100

    def test_scan_output_lines(self, operator, enqueue, failed_headers, output):
        """Test the operator lines printed by a successful scan"""
        enqueue(failed_headers(original_id="target"))

        operator.return_message_to_source_queue("target")

        assert output.lines == [
            "INFO: No message found with ID 'target'. Checking headers of all messages.",
            "",
            FOUND_MESSAGE_LINE,
            "Success.",
        ]

    def test_scan_does_not_increment_return_count(self, operator, broker, enqueue, failed_headers, codec):
        """Test that the scan path leaves ReturnToSourceQueueCount alone"""
        enqueue(failed_headers(original_id="target"))
        enqueue(failed_headers(original_id="counted", **{COUNT: "3"}))

        operator.return_message_to_source_queue("target")
        operator.return_message_to_source_queue("counted")

        returned = [codec.extract_headers(m) for m in broker.list_messages("orders")]
        assert COUNT not in returned[0]
        assert returned[1][COUNT] == "3"

    def test_original_id_takes_precedence_over_message_id(
        self, operator, broker, enqueue, failed_headers
    ):
        """Test that the scan matches on OriginalId before MessageId"""
        enqueue(failed_headers(original_id="target", **{Headers.ORIGINAL_ID: "something-else"}), body=b"decoy")
        enqueue(failed_headers(original_id="unrelated", **{Headers.ORIGINAL_ID: "target"}), body=b"wanted")

        outcome = operator.return_message_to_source_queue("target")

        assert outcome is RequeueOutcome.RETURNED_FROM_SCAN
        assert [m.body for m in broker.list_messages("orders")] == [b"wanted"]
        assert [m.body for m in broker.list_messages("error")] == [b"decoy"]

    def test_only_first_match_is_returned(self, operator, broker, enqueue, failed_headers):
        """Test that only the first matching message is moved"""
        enqueue(failed_headers(original_id="target"), body=b"first")
        enqueue(failed_headers(original_id="target"), body=b"second")

        operator.return_message_to_source_queue("target")

        assert [m.body for m in broker.list_messages("orders")] == [b"first"]
        assert [m.body for m in broker.list_messages("error")] == [b"second"]

    def test_no_match_reports_and_returns_cleanly(self, operator, broker, enqueue, failed_headers, output):
        """Test that a scan without a match reports and leaves the queue alone"""
        enqueue(failed_headers(original_id="other"))
        enqueue({Headers.FAILED_Q: "orders@localhost"})
        enqueue(failed_headers(original_id="", **{Headers.ORIGINAL_ID: ""}))

        outcome = operator.return_message_to_source_queue("target")

        assert outcome is RequeueOutcome.NOT_FOUND
        assert len(broker.list_messages("error")) == 3
        assert output.lines == [
            "INFO: No message found with ID 'target'. Checking headers of all messages.",
            "",
            "INFO: No message found with ID 'target' in any headers.",
        ]

    def test_empty_error_queue_reports_not_found(self, operator, output):
        """Test scanning an empty error queue"""
        assert operator.return_message_to_source_queue("target") is RequeueOutcome.NOT_FOUND
        assert output.lines[-1] == "INFO: No message found with ID 'target' in any headers."

    def test_unreadable_headers_are_skipped(self, operator, broker, connector, enqueue, failed_headers):
        """Test that the scan skips messages whose headers cannot be read"""
        connector.open("memory://localhost#error").send(Message(body=b"junk", extension=b"garbage"))
        enqueue(failed_headers(original_id="target"), body=b"wanted")

        outcome = operator.return_message_to_source_queue("target")

        assert outcome is RequeueOutcome.RETURNED_FROM_SCAN
        assert [m.body for m in broker.list_messages("error")] == [b"junk"]

    def test_scan_send_failure_leaves_message_in_error_queue(
        self, operator, broker, enqueue, failed_headers, monkeypatch
    ):
        """Test that a failed send on the scan path rolls back"""
        enqueue(failed_headers(original_id="target"), body=b"wanted")
        monkeypatch.setattr(BrokeredQueue, "send", _fail_send_to("orders"))

        with pytest.raises(QueueAccessError):
            operator.return_message_to_source_queue("target")

        assert [m.body for m in broker.list_messages("error")] == [b"wanted"]
        assert broker.list_messages("orders") == []

    def test_scan_match_without_failed_queue_is_left_in_place(self, operator, broker, enqueue, output):
        """Test that a scan match without FailedQ stays in the error queue"""
        enqueue({Headers.MESSAGE_ID: "target"})

        outcome = operator.return_message_to_source_queue("target")

        assert outcome is RequeueOutcome.MISSING_SOURCE_QUEUE
        assert len(broker.list_messages("error")) == 1
        assert MISSING_SOURCE_QUEUE_LINE in output.lines


class TestReturnAll:
    """Test returning every message in the error queue"""

    def test_all_messages_returned(self, operator, broker, enqueue, failed_headers):
        """Test that return_all moves every message"""
        for index in range(3):
            enqueue(failed_headers(original_id=f"m{index}"), body=f"{index}".encode())

        summary = operator.return_all()

        assert summary.returned == 3
        assert summary.attempted == 3
        assert broker.list_messages("error") == []
        assert [m.body for m in broker.list_messages("orders")] == [b"0", b"1", b"2"]

    def test_failure_on_one_message_does_not_abort_batch(
        self, operator, broker, enqueue, failed_headers, output, monkeypatch
    ):
        """Test that one failing message does not stop the batch"""
        broker.create_queue("billing")
        enqueue(failed_headers(original_id="m0"), body=b"first")
        second = enqueue(failed_headers(original_id="m1", failed_q="billing@localhost"), body=b"second")
        enqueue(failed_headers(original_id="m2"), body=b"third")

        monkeypatch.setattr(BrokeredQueue, "send", _fail_send_to("billing"))

        summary = operator.return_all()

        assert summary.outcomes[RequeueOutcome.RETURNED] == 2
        assert summary.outcomes[RequeueOutcome.FAILED] == 1
        assert summary.failures == [(second.id, "Insufficient resources")]
        assert [m.body for m in broker.list_messages("orders")] == [b"first", b"third"]
        assert [m.body for m in broker.list_messages("error")] == [b"second"]
        assert f"ERROR: Failed to return message '{second.id}': Insufficient resources" in output.lines

    def test_missing_header_messages_counted_and_kept(self, operator, broker, enqueue, failed_headers):
        """Test that messages without FailedQ are counted and kept"""
        enqueue(failed_headers(original_id="m0"))
        enqueue({Headers.MESSAGE_ID: "m1"})

        summary = operator.return_all()

        assert summary.outcomes == {
            RequeueOutcome.RETURNED: 1,
            RequeueOutcome.MISSING_SOURCE_QUEUE: 1,
        }
        assert len(broker.list_messages("error")) == 1

    def test_batch_works_on_snapshot(self, operator, broker, connector, enqueue, failed_headers, codec):
        """Test that messages arriving during the batch are not picked up"""
        enqueue(failed_headers(original_id="m0"), body=b"initial")
        error = connector.open("memory://localhost#error")
        late = Message(body=b"late", extension=codec.encode(failed_headers(original_id="late")))

        original = operator.return_message_to_source_queue

        def return_and_produce(message_id):
            outcome = original(message_id)
            error.send(late)
            return outcome

        operator.return_message_to_source_queue = return_and_produce
        summary = operator.return_all()

        assert summary.attempted == 1
        assert [m.body for m in broker.list_messages("error")] == [b"late"]

    def test_empty_queue(self, operator):
        """Test return_all on an empty error queue"""
        summary = operator.return_all()

        assert summary.attempted == 0
        assert summary.failures == []
