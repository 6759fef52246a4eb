from datetime import datetime, timedelta

from cardflow.models.card_request import CardRequest
from cardflow.models.user import User
from cardflow.models.whatsapp import WhatsAppNotification
from cardflow.whatsapp.notifications import dispatch_due_notifications, format_card_request_message


async def _queue(container, phone: str = "5511987654321") -> WhatsAppNotification:
    notification = WhatsAppNotification(
        recipient_phone=phone,
        message_content="hello",
        notification_type="payment_notification",
        related_entity_type="payment",
        related_entity_id="tx-1",
        user_id="u1",
    )
    await container.repos.notifications.save(notification)
    return notification


def test_card_request_message_has_reply_instructions():
    user = User.new("ext", "low@example.com", score=420)
    request = CardRequest(
        request_id="a1b2c3d4-0000-0000-0000-000000000000",
        user_id=user.user_id,
        idempotency_key="k",
        score_at_request=420,
        tier_at_request="low",
    )
    message = format_card_request_message(request, user)
    assert "[Card Request #A1B2C3D4]" in message
    assert "Customer: low@example.com" in message
    assert 'Reply: "y A1B2C3D4" to approve' in message
    assert 'Reply: "n A1B2C3D4" to reject' in message


async def test_dispatch_sends_pending(container, sender):
    notification = await _queue(container)
    report = await dispatch_due_notifications(container)

    assert report == {"sent": 1, "failed": 0, "dead_letter": 0}
    assert sender.sent == [("5511987654321", "hello")]
    stored = await container.repos.notifications.get(notification.notification_id)
    assert stored.delivery_status == "sent"
    assert stored.wpp_message_id == "wpp-msg-1"
    assert stored.sent_at is not None


async def test_failure_schedules_retry_then_dead_letters(container, sender):
    notification = await _queue(container)
    sender.fail = True
    now = datetime.utcnow()

    report = await dispatch_due_notifications(container, now=now)
    assert report["failed"] == 1
    stored = await container.repos.notifications.get(notification.notification_id)
    assert stored.delivery_status == "failed"
    assert stored.retry_count == 1
    assert stored.next_retry_at == now + timedelta(seconds=120)

    # not due yet
    assert await dispatch_due_notifications(container, now=now + timedelta(seconds=60)) == {
        "sent": 0,
        "failed": 0,
        "dead_letter": 0,
    }

    await dispatch_due_notifications(container, now=stored.next_retry_at)
    stored = await container.repos.notifications.get(notification.notification_id)
    assert stored.retry_count == 2

    report = await dispatch_due_notifications(container, now=stored.next_retry_at)
    assert report["dead_letter"] == 1
    stored = await container.repos.notifications.get(notification.notification_id)
    assert stored.delivery_status == "dead_letter"
    assert stored.retry_count == 3
    assert stored.last_error == "WPP-Connect unreachable"


async def test_failed_notification_recovers(container, sender):
    notification = await _queue(container)
    sender.fail = True
    now = datetime.utcnow()
    await dispatch_due_notifications(container, now=now)

    sender.fail = False
    await dispatch_due_notifications(container, now=now + timedelta(minutes=5))
    stored = await container.repos.notifications.get(notification.notification_id)
    assert stored.delivery_status == "sent"
    assert stored.last_error is None
