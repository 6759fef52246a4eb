"""Outbound admin notifications over WhatsApp: queueing, delivery and retry bookkeeping."""

from datetime import datetime

from cardflow.core.logging import get_logger
from cardflow.domain.backoff import NOTIFICATION_MAX_RETRIES, next_notification_attempt
from cardflow.models.card import Card
from cardflow.models.card_request import CardRequest
from cardflow.models.pending_approval import PendingApproval
from cardflow.models.transaction import Transaction
from cardflow.models.user import User
from cardflow.models.whatsapp import WhatsAppNotification
from cardflow.whatsapp.phone import format_phone_for_display

log = get_logger(__name__)


def format_card_request_message(request: CardRequest, user: User) -> str:
    short_id = request.short_id
    return (
        f"[Card Request #{short_id}]\n"
        f"Customer: {user.email}\n"
        f"Tier: {request.tier_at_request}\n"
        f"Score: {request.score_at_request}\n"
        "\n"
        f'Reply: "y {short_id}" to approve\n'
        f'Reply: "n {short_id}" to reject'
    )


def format_payment_message(transaction: Transaction, card: Card, user: User) -> str:
    return (
        "[Payment Received]\n"
        f"Customer: {user.email}\n"
        f"Card: **** {card.last4}\n"
        f"Amount: ${transaction.amount:,.2f}\n"
        f"Time: {transaction.timestamp.strftime('%Y-%m-%d %H:%M')} UTC\n"
        "\n"
        "(No action required)"
    )


async def enqueue_card_request_notifications(container, request: CardRequest, user: User) -> PendingApproval | None:
    """Queue one approval prompt per admin phone and open the tracker. None when the channel is off."""
    config = container.whatsapp
    if not config.enabled:
        log.info("card_request_notifications_skipped", request_id=request.request_id, reason="channel_disabled")
        return None
    repos = container.repos
    message = format_card_request_message(request, user)
    notification_ids: list[str] = []
    for phone in config.admin_phones:
        notification = WhatsAppNotification(
            recipient_phone=phone,
            message_content=message,
            notification_type="card_request_approval",
            related_entity_type="cardRequest",
            related_entity_id=request.request_id,
            user_id=user.user_id,
        )
        await repos.notifications.save(notification)
        notification_ids.append(notification.notification_id)

    tracker = PendingApproval.new(
        request.request_id,
        user.user_id,
        notification_ids,
        timeout_hours=container.settings.approval_timeout_hours,
    )
    await repos.pending_approvals.save(tracker)
    log.info(
        "card_request_notifications_queued",
        request_id=request.request_id,
        short_id=tracker.short_id,
        count=len(notification_ids),
    )
    return tracker


async def enqueue_payment_notifications(container, transaction: Transaction, card: Card, user: User) -> list[str]:
    config = container.whatsapp
    if not config.enabled:
        return []
    message = format_payment_message(transaction, card, user)
    ids = []
    for phone in config.admin_phones:
        notification = WhatsAppNotification(
            recipient_phone=phone,
            message_content=message,
            notification_type="payment_notification",
            related_entity_type="payment",
            related_entity_id=transaction.transaction_id,
            user_id=user.user_id,
        )
        await container.repos.notifications.save(notification)
        ids.append(notification.notification_id)
    return ids


async def send_notification(container, notification: WhatsAppNotification, now: datetime | None = None) -> WhatsAppNotification:
    """Attempt delivery once and persist the outcome."""
    now = now or datetime.utcnow()
    try:
        message_id = await container.sender.send_message(notification.recipient_phone, notification.message_content)
    except Exception as e:
        retry_count = notification.retry_count + 1
        error = str(e)[:500]
        if retry_count >= NOTIFICATION_MAX_RETRIES:
            updated = notification.evolve(
                delivery_status="dead_letter",
                retry_count=retry_count,
                last_error=error,
                next_retry_at=None,
                updated_at=now,
            )
            log.error(
                "whatsapp_notification_dead_lettered",
                notification_id=notification.notification_id,
                phone=format_phone_for_display(notification.recipient_phone),
                error=error,
            )
        else:
            updated = notification.evolve(
                delivery_status="failed",
                retry_count=retry_count,
                last_error=error,
                next_retry_at=next_notification_attempt(retry_count, now),
                updated_at=now,
            )
            log.warning(
                "whatsapp_send_failed",
                notification_id=notification.notification_id,
                phone=format_phone_for_display(notification.recipient_phone),
                retry_count=retry_count,
                error=error,
            )
    else:
        updated = notification.evolve(
            delivery_status="sent",
            wpp_message_id=message_id or None,
            sent_at=now,
            next_retry_at=None,
            last_error=None,
            updated_at=now,
        )
    await container.repos.notifications.save(updated)
    return updated


async def dispatch_due_notifications(container, limit: int = 10, now: datetime | None = None) -> dict[str, int]:
    now = now or datetime.utcnow()
    due = await container.repos.notifications.find_due(now, limit=limit)
    report = {"sent": 0, "failed": 0, "dead_letter": 0}
    for notification in due:
        updated = await send_notification(container, notification, now)
        report[updated.delivery_status] = report.get(updated.delivery_status, 0) + 1
    if due:
        log.info("whatsapp_notifications_dispatched", **report)
    return report
