from __future__ import annotations

from datetime import timedelta

import pytest

from webhook_delivery.core.exceptions import (
    InvalidStatusTransitionError,
    InvalidWebhookConfigError,
    TransportError,
    WebhookDisabledError,
)
from webhook_delivery.domain.enums import DeliveryStatus, TransportErrorKind
from webhook_delivery.domain.webhooks import TransportResponse
from webhook_delivery.services.coordinator import DeliveryCoordinator, generate_delivery_id
from webhook_delivery.services.signing import encode_body, sign_payload

from tests.utils import BASE_TIME, FakeTransport, make_config, make_delivery, make_policy


def test_generate_delivery_id_format():
    """Delivery ids look like dlv_<ms>_<16 hex chars> and are unique."""
    first, second = generate_delivery_id(), generate_delivery_id()
    prefix, millis, suffix = first.split("_")
    assert prefix == "dlv"
    assert millis.isdigit()
    assert len(suffix) == 16
    assert first != second


@pytest.mark.asyncio
async def test_enqueue_creates_pending_delivery(coordinator, repository):
    """Enqueue stores a PENDING delivery with signed headers."""
    config = make_config(secret="s3cret", headers={"X-Team": "data"})
    payload = {"event": "pipeline.completed", "runId": "r1"}

    delivery = await coordinator.enqueue(config, payload)

    assert delivery.status == DeliveryStatus.PENDING
    assert delivery.attempts == 0
    assert delivery.max_attempts == 3
    assert delivery.idempotency_key == delivery.id
    assert delivery.created_at == BASE_TIME
    assert delivery.headers["X-Team"] == "data"
    assert delivery.headers["X-Webhook-Delivery-Id"] == delivery.id
    assert delivery.headers["X-Signature"] == sign_payload(encode_body(payload), "s3cret")
    assert await repository.get(delivery.id) is delivery


@pytest.mark.asyncio
async def test_enqueue_is_idempotent_per_key(coordinator, repository):
    """A second enqueue with the same key returns the first delivery."""
    config = make_config()
    first = await coordinator.enqueue(config, {"n": 1}, idempotency_key="order-42")
    second = await coordinator.enqueue(config, {"n": 2}, idempotency_key="order-42")

    assert second.id == first.id
    assert second.payload == {"n": 1}
    assert len(await repository.list()) == 1


@pytest.mark.asyncio
async def test_submit_reports_creation(coordinator):
    """submit tells new deliveries apart from existing ones."""
    config = make_config()
    _, created = await coordinator.submit(config, {}, "k")
    _, created_again = await coordinator.submit(config, {}, "k")
    assert created is True
    assert created_again is False


@pytest.mark.asyncio
async def test_key_is_reusable_after_terminal_failure(coordinator):
    """A FAILED delivery does not block its idempotency key."""
    config = make_config()
    first = await coordinator.enqueue(config, {}, idempotency_key="k")
    await coordinator.attempt(first, FakeTransport(404))
    assert first.status == DeliveryStatus.FAILED

    second = await coordinator.enqueue(config, {}, idempotency_key="k")
    assert second.id != first.id
    assert second.status == DeliveryStatus.PENDING


@pytest.mark.asyncio
async def test_disabled_config_is_rejected(coordinator, repository):
    """Disabled webhooks are rejected before anything is stored."""
    with pytest.raises(WebhookDisabledError):
        await coordinator.enqueue(make_config(enabled=False), {})
    assert await repository.list() == []


@pytest.mark.asyncio
async def test_invalid_url_is_rejected(coordinator):
    """A config with a bad URL is rejected at enqueue."""
    config = make_config().model_copy(update={"url": "not-a-url"})
    with pytest.raises(InvalidWebhookConfigError):
        await coordinator.enqueue(config, {})


@pytest.mark.asyncio
async def test_three_retryable_failures_end_in_dead_letter(coordinator, clock):
    """Three 503s with max_attempts=3 end in DEAD_LETTER."""
    delivery = await coordinator.enqueue(make_config(), {"a": 1})
    transport = FakeTransport(503)

    await coordinator.attempt(delivery, transport)
    assert delivery.status == DeliveryStatus.RETRYING
    assert delivery.next_retry_at == BASE_TIME + timedelta(milliseconds=1000)

    clock.advance(seconds=1)
    await coordinator.attempt(delivery, transport)
    assert delivery.status == DeliveryStatus.RETRYING
    assert delivery.next_retry_at == clock() + timedelta(milliseconds=2000)

    clock.advance(seconds=2)
    await coordinator.attempt(delivery, transport)

    assert delivery.status == DeliveryStatus.DEAD_LETTER
    assert delivery.attempts == 3
    assert delivery.error == "HTTP 503"
    assert delivery.next_retry_at is None
    assert len(transport.calls) == 3


@pytest.mark.asyncio
async def test_non_retryable_status_fails_after_one_attempt(coordinator):
    """A 404 fails the delivery after one attempt."""
    delivery = await coordinator.enqueue(make_config(), {})
    await coordinator.attempt(delivery, FakeTransport(404))

    assert delivery.status == DeliveryStatus.FAILED
    assert delivery.attempts == 1
    assert delivery.response_status == 404
    assert delivery.error == "HTTP 404"


@pytest.mark.asyncio
async def test_success_on_second_attempt(coordinator, clock):
    """A success after one failure marks the delivery DELIVERED."""
    delivery = await coordinator.enqueue(make_config(), {})
    transport = FakeTransport(500, TransportResponse(status=204, body=""))

    await coordinator.attempt(delivery, transport)
    clock.advance(seconds=1)
    await coordinator.attempt(delivery, transport)

    assert delivery.status == DeliveryStatus.DELIVERED
    assert delivery.attempts == 2
    assert delivery.delivered_at == clock()
    assert delivery.response_status == 204
    assert delivery.error is None


@pytest.mark.asyncio
async def test_transport_errors_are_classified(coordinator):
    """Timeouts are retried, other transport errors fail the delivery."""
    retryable = await coordinator.enqueue(make_config(), {}, idempotency_key="a")
    await coordinator.attempt(
        retryable, FakeTransport(TransportError(TransportErrorKind.TIMEOUT, "timed out"))
    )
    assert retryable.status == DeliveryStatus.RETRYING
    assert retryable.error == "timed out"

    permanent = await coordinator.enqueue(make_config(), {}, idempotency_key="b")
    await coordinator.attempt(
        permanent, FakeTransport(TransportError(TransportErrorKind.OTHER, "bad certificate"))
    )
    assert permanent.status == DeliveryStatus.FAILED


@pytest.mark.asyncio
async def test_attempt_sends_stored_request(coordinator):
    """The attempt sends the stored method, URL, body and headers."""
    payload = {"b": 2, "a": 1}
    delivery = await coordinator.enqueue(make_config(method="PUT"), payload)
    transport = FakeTransport(200)

    await coordinator.attempt(delivery, transport)

    call = transport.calls[0]
    assert call["method"] == "PUT"
    assert call["url"] == "https://hooks.example.com/orders"
    assert call["body"] == encode_body(payload)
    assert call["headers"]["Content-Type"] == "application/json"
    assert call["headers"]["X-Webhook-ID"] == "wh_orders"


@pytest.mark.asyncio
async def test_response_body_is_truncated(coordinator):
    """Long response bodies are cut to the configured length."""
    delivery = await coordinator.enqueue(make_config(), {})
    await coordinator.attempt(delivery, FakeTransport(TransportResponse(status=200, body="x" * 5000)))
    assert len(delivery.response_body) == 2000


@pytest.mark.parametrize(
    "status", [DeliveryStatus.DELIVERED, DeliveryStatus.FAILED, DeliveryStatus.DEAD_LETTER]
)
@pytest.mark.asyncio
async def test_attempt_rejects_terminal_records(coordinator, status):
    """Finished deliveries cannot be attempted again."""
    transport = FakeTransport(200)
    with pytest.raises(InvalidStatusTransitionError):
        await coordinator.attempt(make_delivery(status=status), transport)
    assert transport.calls == []


@pytest.mark.asyncio
async def test_single_attempt_policy_dead_letters_immediately(repository, clock):
    """With max_attempts=1 the first retryable failure is final."""
    coordinator = DeliveryCoordinator(repository, clock=clock)
    delivery = await coordinator.enqueue(make_config(retry=make_policy(max_attempts=1)), {})
    await coordinator.attempt(delivery, FakeTransport(502))
    assert delivery.status == DeliveryStatus.DEAD_LETTER
    assert delivery.attempts == 1


def test_process_due_selects_attemptable_records():
    """Only pending or retrying records whose time has come are due."""
    now = BASE_TIME
    ready = make_delivery(id="ready")
    waiting = make_delivery(
        id="waiting", status=DeliveryStatus.RETRYING, next_retry_at=now + timedelta(seconds=1)
    )
    overdue = make_delivery(
        id="overdue", status=DeliveryStatus.RETRYING, next_retry_at=now - timedelta(seconds=1)
    )
    done = make_delivery(id="done", status=DeliveryStatus.DELIVERED)

    due = DeliveryCoordinator.process_due([ready, waiting, overdue, done], now)

    assert [d.id for d in due] == ["ready", "overdue"]
