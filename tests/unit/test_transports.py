"""Transport tests."""

import pytest

from stepwise.constants import JobStatus
from stepwise.contracts import JobUpdateMessage
from stepwise.transports.inmemory import InMemoryTransport


@pytest.mark.asyncio
async def test_inmemory_transport_basic():
    """Test basic InMemoryTransport publish/subscribe."""
    transport = InMemoryTransport()

    message = JobUpdateMessage(
        execution_id=1, job_id=2, status=JobStatus.REJECTED, result={"reason": "no"}
    )

    await transport.publish("test_topic", message)
    assert transport.pending("test_topic") == 1

    # Subscribe and verify message
    message_received = False
    async for raw_msg, received_msg in transport.subscribe("test_topic"):
        assert received_msg.job_id == 2
        assert received_msg.status == JobStatus.REJECTED
        assert received_msg.result["reason"] == "no"

        await transport.ack(raw_msg)
        message_received = True
        break

    assert message_received
    assert transport.pending("test_topic") == 0


@pytest.mark.asyncio
async def test_inmemory_transport_publish_while_consuming():
    """Publishing from inside the consumer loop must not block."""
    transport = InMemoryTransport()
    await transport.publish("t", JobUpdateMessage(execution_id=1, job_id=1))

    seen = []
    async for _, msg in transport.subscribe("t", lifespan=0.5):
        seen.append(msg.attempt)
        if msg.attempt < 3:
            await transport.publish("t", msg.bump_attempt())

    assert seen == [1, 2, 3]


@pytest.mark.asyncio
async def test_inmemory_transport_lifespan_expires():
    transport = InMemoryTransport()
    received = [msg async for _, msg in transport.subscribe("empty", lifespan=0.1)]
    assert received == []


@pytest.mark.asyncio
async def test_inmemory_transport_nack_requeues_at_front():
    transport = InMemoryTransport()
    await transport.publish("t", JobUpdateMessage(execution_id=1, job_id=1))
    await transport.publish("t", JobUpdateMessage(execution_id=1, job_id=2))

    async with transport:
        async for raw_msg, msg in transport.subscribe("t"):
            assert msg.job_id == 1
            await transport.nack(raw_msg)
            break

    assert transport.pending("t") == 2
    received = [msg.job_id async for _, msg in transport.subscribe("t", lifespan=0.2)]
    assert received == [1, 2]


@pytest.mark.asyncio
async def test_inmemory_transport_nack_without_requeue_drops():
    transport = InMemoryTransport()
    await transport.publish("t", JobUpdateMessage(execution_id=1, job_id=1))
    async for raw_msg, _ in transport.subscribe("t"):
        await transport.nack(raw_msg, requeue=False)
        break
    assert transport.pending("t") == 0


@pytest.mark.asyncio
async def test_redis_transport_import():
    """Test Redis transport can be imported (even if redis not available)."""
    try:
        from stepwise.transports.redis import RedisTransport

        try:
            transport = RedisTransport()
            assert transport.host == "localhost"
            assert transport.port == 6379
            assert transport._queue_name("jobs") == "stepwise:jobs"
        except ImportError:
            # Redis not available, just test import worked
            pass
    except ImportError:
        pytest.fail("RedisTransport should be importable")
