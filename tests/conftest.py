"""
Pytest Fixtures and Test Configuration
In-memory queue servers for unit tests, a Redis testcontainer for integration tests
"""

from typing import Callable, Dict, Generator, Optional

import pytest

from returntosource.models.headers import Headers
from returntosource.models.message import Message
from returntosource.queues.codec import HeaderCodec
from returntosource.queues.memory import InMemoryBroker, InMemoryConnector
from returntosource.queues.paths import AddressResolver
from returntosource.requeue.operator import RequeueOperator
from returntosource.requeue.output import RecordingOutput

MEMORY_URL = "memory://localhost"
ERROR_QUEUE = "error"
SOURCE_QUEUE = "orders"

# ============================================================================
# In-memory queue server
# ============================================================================


@pytest.fixture
def connector() -> InMemoryConnector:
    """Connector with fresh in-memory servers"""
    return InMemoryConnector()


@pytest.fixture
def resolver() -> AddressResolver:
    """Resolver mapping every machine to an in-memory server"""
    return AddressResolver(url_template="memory://{machine}", local_machine="localhost")


@pytest.fixture
def broker(connector: InMemoryConnector) -> InMemoryBroker:
    """
    The local in-memory server with a transactional error queue and source queue

    Returns:
        InMemoryBroker shared with the connector
    """
    broker = connector.broker(MEMORY_URL)
    broker.create_queue(ERROR_QUEUE, transactional=True)
    broker.create_queue(SOURCE_QUEUE, transactional=True)
    return broker


@pytest.fixture
def codec() -> HeaderCodec:
    return HeaderCodec()


@pytest.fixture
def enqueue(connector: InMemoryConnector, broker: InMemoryBroker, codec: HeaderCodec) -> Callable[..., Message]:
    """
    Factory that puts a message with the given headers into a queue

    Returns:
        Callable(headers, body=b"payload", queue="error") -> stored Message
    """

    def _enqueue(
        headers: Optional[Dict[str, str]] = None,
        body: bytes = b"payload",
        queue: str = ERROR_QUEUE,
    ) -> Message:
        message = Message(body=body, extension=codec.encode(headers or {}))
        connector.open(f"{MEMORY_URL}#{queue}").send(message)
        return broker.list_messages(queue)[-1]

    return _enqueue


@pytest.fixture
def failed_headers() -> Callable[..., Dict[str, str]]:
    """Factory for headers of a message that failed from a source queue"""

    def _headers(original_id: str = "original-1", failed_q: str = f"{SOURCE_QUEUE}@localhost", **extra) -> Dict[str, str]:
        headers = {
            Headers.MESSAGE_ID: original_id,
            Headers.FAILED_Q: failed_q,
        }
        headers.update(extra)
        return headers

    return _headers


@pytest.fixture
def output() -> RecordingOutput:
    return RecordingOutput()


@pytest.fixture
def operator(
    connector: InMemoryConnector,
    resolver: AddressResolver,
    broker: InMemoryBroker,
    output: RecordingOutput,
) -> RequeueOperator:
    """
    Requeue operator on the in-memory error queue

    The receive timeout is short so tests that fall back to scanning stay fast.
    """
    operator = RequeueOperator(
        connector=connector,
        resolver=resolver,
        output=output,
        receive_timeout=0.05,
    )
    operator.set_input_queue(f"{ERROR_QUEUE}@localhost")
    return operator


# ============================================================================
# Redis Testcontainer
# ============================================================================


@pytest.fixture(scope="session")
def redis_container() -> Generator["RedisContainer", None, None]:
    """
    Start a Redis testcontainer for the test session

    Yields:
        Running RedisContainer instance
    """
    from testcontainers.redis import RedisContainer

    container = RedisContainer("redis:7")
    container.start()
    yield container
    container.stop()


@pytest.fixture(scope="session")
def redis_url(redis_container) -> str:
    """URL of the Redis testcontainer"""
    host = redis_container.get_container_host_ip()
    port = redis_container.get_exposed_port(6379)
    return f"redis://{host}:{port}/0"


@pytest.fixture
def redis_client(redis_url: str):
    """
    Redis client with an empty database for each test
    """
    import redis

    client = redis.Redis.from_url(redis_url)
    client.flushdb()
    yield client
    client.flushdb()
    client.close()
