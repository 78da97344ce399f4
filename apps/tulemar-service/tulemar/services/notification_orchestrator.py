"""
Notification orchestrator: fans order events out to the customer and the
staff assigned to the order.

Each notification is stored in ``order_notifications`` as ``pending`` and
then dispatched on its channel; the row (matched by id) ends up ``sent`` or
``failed``. Delivery failures never fail the workflow that triggered them.
"""

import asyncio
import logging
import os
import uuid
from typing import Optional, List, Dict, Any

from sqlalchemy.orm import Session

from tulemar.db import models
from tulemar.db.models import now_utc
from tulemar.db.repositories import notifications as notifications_repo
from tulemar.db.repositories import orders as orders_repo
from tulemar.db.repositories import assignments as assignments_repo
from tulemar.db.repositories import users as users_repo
from tulemar.services.workflow_errors import OrderNotFoundError, UnknownNotificationTypeError
from tulemar.utils.feature_flags import channel_enabled, notifications_enabled
from tulemar.utils.roles import (
    ROLE_ADMIN,
    ROLE_CLIENT,
    ROLE_CONCIERGE,
    ROLE_DRIVER,
    ROLE_SHOPPER,
    ROLE_STORE_MANAGER,
    ROLE_SYSADMIN,
    map_recipient_type,
)
from tulemar.utils.urls import build_order_tracking_link
from tulemar import workflow_log

logger = logging.getLogger(__name__)

# Notification type constants
NOTIFY_ORDER_CONFIRMED = 'order_confirmed'
NOTIFY_SHOPPING_STARTED = 'shopping_started'
NOTIFY_ITEMS_PACKED = 'items_packed'
NOTIFY_OUT_FOR_DELIVERY = 'out_for_delivery'
NOTIFY_DELIVERED = 'delivered'
NOTIFY_STOCKING_COMPLETE = 'stocking_complete'
NOTIFY_SUBSTITUTION_NEEDED = 'substitution_needed'
NOTIFY_SUBSTITUTION_APPROVED = 'substitution_approved'
NOTIFY_SUBSTITUTION_REJECTED = 'substitution_rejected'
NOTIFY_DELAY = 'delay_notification'
NOTIFY_SHOPPER_MESSAGE = 'shopper_message'
NOTIFY_STATUS_UPDATE = 'status_update'
NOTIFY_STAFF_ASSIGNED = 'staff_assigned'
NOTIFY_ASSIGNMENT_RECEIVED = 'assignment_received'

CHANNEL_IN_APP = 'in_app'
CHANNEL_EMAIL = 'email'
CHANNEL_SMS = 'sms'
CHANNEL_PUSH = 'push'
CHANNELS = (CHANNEL_IN_APP, CHANNEL_EMAIL, CHANNEL_SMS, CHANNEL_PUSH)
_CHANNEL_LABELS = {CHANNEL_IN_APP: "In-app", CHANNEL_EMAIL: "Email", CHANNEL_SMS: "SMS", CHANNEL_PUSH: "Push"}

SYSTEM_RECIPIENT = 'admin@system'
TEMPLATE_ORDER_NOTIFICATION = 'order_notification'

URGENT_TYPES = frozenset({NOTIFY_SUBSTITUTION_NEEDED, NOTIFY_DELAY, NOTIFY_OUT_FOR_DELIVERY})
SYSTEM_TYPES = frozenset({NOTIFY_ORDER_CONFIRMED, NOTIFY_DELAY, NOTIFY_STOCKING_COMPLETE})
_SMS_ROLES = frozenset({ROLE_CLIENT, ROLE_DRIVER, ROLE_CONCIERGE})
_ROLE_CHANNELS = {
    ROLE_CLIENT: CHANNEL_PUSH,
    ROLE_SHOPPER: CHANNEL_PUSH,
    ROLE_DRIVER: CHANNEL_SMS,
    ROLE_CONCIERGE: CHANNEL_SMS,
    ROLE_ADMIN: CHANNEL_EMAIL,
    ROLE_SYSADMIN: CHANNEL_EMAIL,
    ROLE_STORE_MANAGER: CHANNEL_EMAIL,
}

# Message templates per notification type and recipient role.
NOTIFICATION_TEMPLATES: Dict[str, Dict[str, str]] = {
    NOTIFY_ORDER_CONFIRMED: {
        ROLE_CLIENT: "Hi {customer_name}, your order #{order_number} has been confirmed and assigned to our team. Expected delivery: {arrival_date}",
        ROLE_ADMIN: "New order #{order_number} confirmed for {customer_name}. Total: ${total}",
        ROLE_SHOPPER: "New shopping assignment: Order #{order_number} for {guest_count} guests. Ready to start shopping?",
    },
    NOTIFY_SHOPPING_STARTED: {
        ROLE_CLIENT: "Great news! Our shopper has started collecting your groceries for order #{order_number}. We'll keep you updated on any substitutions.",
        ROLE_ADMIN: "Shopping started for order #{order_number}",
        ROLE_DRIVER: "Order #{order_number} will be ready for pickup soon. Delivery address: {property_address}",
    },
    NOTIFY_ITEMS_PACKED: {
        ROLE_CLIENT: "Your groceries are packed and ready for delivery! Order #{order_number} is on its way to {property_address}",
        ROLE_DRIVER: "Order #{order_number} is ready for pickup and delivery",
        ROLE_CONCIERGE: "Incoming delivery for {property_address}. Order #{order_number} arriving soon.",
    },
    NOTIFY_OUT_FOR_DELIVERY: {
        ROLE_CLIENT: "Your groceries are out for delivery! Expected arrival at {property_address} within the next hour.",
        ROLE_CONCIERGE: "Order #{order_number} is out for delivery to {property_address}. Please prepare for arrival.",
    },
    NOTIFY_DELIVERED: {
        ROLE_CLIENT: "Your groceries have been delivered to {property_address}. Our concierge will stock your kitchen shortly.",
        ROLE_CONCIERGE: "Order #{order_number} delivered to {property_address}. Please begin kitchen stocking.",
    },
    NOTIFY_STOCKING_COMPLETE: {
        ROLE_CLIENT: "Your kitchen at {property_address} is now fully stocked and ready for your arrival. Welcome!",
        ROLE_ADMIN: "Order #{order_number} completed successfully. Kitchen stocked at {property_address}",
        ROLE_STORE_MANAGER: "Guest kitchen ready: {property_address} - Order #{order_number} stocking complete",
    },
    NOTIFY_SUBSTITUTION_NEEDED: {
        ROLE_CLIENT: "We need your approval for a substitution in order #{order_number}. Please check your order page to approve or decline.",
        ROLE_ADMIN: "Substitution pending approval for order #{order_number}",
    },
    NOTIFY_SUBSTITUTION_APPROVED: {
        ROLE_CLIENT: "Substitution confirmed for order #{order_number}: {original_product} will be replaced with {substitute}.",
        ROLE_SHOPPER: "Substitution approved for order #{order_number}: pick {substitute} instead of {original_product}.",
    },
    NOTIFY_SUBSTITUTION_REJECTED: {
        ROLE_CLIENT: "Substitution declined for order #{order_number}: {original_product} will be left out of your order.",
        ROLE_SHOPPER: "Substitution declined for order #{order_number}: leave {original_product} out.",
    },
    NOTIFY_DELAY: {
        ROLE_CLIENT: "We're experiencing a slight delay with your order #{order_number}. New estimated time: {new_eta}",
        ROLE_ADMIN: "Delay reported for order #{order_number}. Reason: {reason}",
    },
    NOTIFY_SHOPPER_MESSAGE: {
        ROLE_CLIENT: "{message}",
    },
    NOTIFY_STATUS_UPDATE: {
        ROLE_CLIENT: "Order #{order_number} status updated to: {status}",
        ROLE_ADMIN: "Order status change: #{order_number} -> {status}",
    },
}

STATUS_MESSAGES = {
    'placed': 'Your order has been placed and is awaiting a shopper',
    'claimed': 'Your order has been assigned to a shopper',
    'shopping': 'Your shopper has started shopping for your order',
    'ready': 'Your order has been packed and is ready for delivery',
    'delivered': 'Your order has been delivered!',
    'closed': 'Your order is complete',
    'canceled': 'Your order has been cancelled',
}


def determine_channel(notification_type: str, role: str) -> str:
    """Preferred channel for a recipient role; urgent types go by SMS where possible."""
    if notification_type in URGENT_TYPES and role in _SMS_ROLES:
        return CHANNEL_SMS
    return _ROLE_CHANNELS.get(role, CHANNEL_EMAIL)


def _template_context(order: models.Order, metadata: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "order_number": order.order_number,
        "customer_name": order.customer_name,
        "arrival_date": order.arrival_date.isoformat() if order.arrival_date else "TBD",
        "total": f"{float(order.total_amount or 0):.2f}",
        "guest_count": order.guest_count or "your",
        "property_address": order.property_address or "your property",
        "status": order.status,
        "new_eta": metadata.get("new_eta") or metadata.get("newEta") or "TBD",
        "reason": metadata.get("reason") or "Unknown",
        "message": metadata.get("message") or "Update from your personal shopper",
        "original_product": metadata.get("original_product") or "an item",
        "substitute": metadata.get("substitute") or "an alternative product",
    }


class LoggingSmsSender:
    """SMS channel stand-in that records the message in the service log."""

    provider = "log_sms"

    def send(self, to: str, message: str) -> Dict[str, Any]:
        logger.info("sms_notification to=%s message=%s", to, message)
        return {"success": True, "provider": self.provider, "message_id": uuid.uuid4().hex}


class LoggingPushSender:
    """Push channel stand-in that records the message in the service log."""

    provider = "log_push"

    def send(self, to: str, message: str) -> Dict[str, Any]:
        logger.info("push_notification to=%s message=%s", to, message)
        return {"success": True, "provider": self.provider, "message_id": uuid.uuid4().hex}


class NotificationOrchestrator:
    """Creates and dispatches order notifications."""

    def __init__(self, db: Session, email_service: Optional[Any] = None, sms_sender: Optional[Any] = None, push_sender: Optional[Any] = None):
        self.db = db
        self._email_service = email_service
        self.sms_sender = sms_sender or LoggingSmsSender()
        self.push_sender = push_sender or LoggingPushSender()

    @property
    def email_service(self):
        # Resolved lazily so tests can patch the factory
        if self._email_service is None:
            from tulemar.services import transactional_email_service
            self._email_service = transactional_email_service.get_transactional_email_service()
        return self._email_service

    # === Fan-out ===

    def orchestrate(
        self,
        order_id: uuid.UUID,
        notification_type: str,
        phase: str = "general",
        recipient_type: Optional[str] = None,
        recipient_identifier: Optional[str] = None,
        channel: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        commit: bool = True,
    ) -> Dict[str, Any]:
        """
        Build, store and dispatch the notifications for one order event.

        With an explicit recipient only that recipient is notified; otherwise
        the customer, every active stakeholder with a template for its role,
        and (for system types) the admin mailbox.

        Returns:
            Dict with 'notifications_sent', 'notifications' (row ids) and 'failures'
        """
        metadata = dict(metadata or {})
        order = orders_repo.get_order(self.db, order_id)
        if order is None:
            raise OrderNotFoundError()

        templates = NOTIFICATION_TEMPLATES.get(notification_type)
        explicit = bool(recipient_type and recipient_identifier)
        if templates is None and not (explicit and metadata.get("message")):
            raise UnknownNotificationTypeError(f"Unknown notification type: {notification_type}")
        templates = templates or {}
        if channel is not None and channel not in CHANNELS:
            raise UnknownNotificationTypeError(f"Unknown channel: {channel}")

        if not notifications_enabled():
            logger.info("notifications_disabled order_id=%s type=%s", order_id, notification_type)
            return {"notifications_sent": 0, "notifications": [], "failures": 0}

        context = _template_context(order, metadata)
        planned = self._plan_recipients(order, notification_type, templates, context, metadata, explicit, recipient_type, recipient_identifier, channel)

        rows = [
            notifications_repo.create_notification(
                self.db,
                order_id=order.id,
                notification_type=notification_type,
                recipient_type=p["recipient_type"],
                recipient_identifier=p["recipient_identifier"],
                channel=p["channel"],
                message_content=p["message"],
                metadata=p["metadata"],
            )
            for p in planned
        ]

        workflow_log.log_notifications_sent(
            self.db,
            order_id=order.id,
            notification_type=notification_type,
            phase=phase,
            count=len(rows),
            status=order.status,
            metadata={"notification_type": notification_type, "recipient_count": len(rows)},
            commit=False,
        )

        failures = 0
        for row in rows:
            if not self._dispatch(order, row):
                failures += 1

        if commit:
            self.db.commit()
        logger.info(
            "notifications_orchestrated order_id=%s type=%s count=%s failures=%s",
            order.id, notification_type, len(rows), failures,
        )
        return {
            "notifications_sent": len(rows),
            "notifications": [r.id for r in rows],
            "failures": failures,
        }

    def _plan_recipients(self, order, notification_type, templates, context, metadata, explicit, recipient_type, recipient_identifier, channel) -> List[Dict[str, Any]]:
        planned: List[Dict[str, Any]] = []
        if explicit:
            role = map_recipient_type(recipient_type)
            template = templates.get(role) or templates.get(ROLE_CLIENT)
            message = metadata.get("message") or (template.format_map(context) if template else f"Order update for #{order.order_number}")
            planned.append({
                "recipient_type": role,
                "recipient_identifier": recipient_identifier,
                "channel": channel or determine_channel(notification_type, role),
                "message": message,
                "metadata": {**metadata, "specific_recipient": True},
            })
            return planned

        if templates.get(ROLE_CLIENT):
            planned.append({
                "recipient_type": ROLE_CLIENT,
                "recipient_identifier": order.customer_email,
                "channel": channel or determine_channel(notification_type, ROLE_CLIENT),
                "message": templates[ROLE_CLIENT].format_map(context),
                "metadata": {**metadata, "phone": order.customer_phone},
            })

        active = assignments_repo.get_assignments_for_order(self.db, order.id, statuses=("assigned", "accepted"))
        for assignment in active:
            template = templates.get(assignment.role)
            if not template:
                continue
            planned.append({
                "recipient_type": assignment.role,
                "recipient_identifier": str(assignment.user_id),
                "channel": channel or determine_channel(notification_type, assignment.role),
                "message": template.format_map(context),
                "metadata": {**metadata, "role": assignment.role},
            })

        if notification_type in SYSTEM_TYPES and templates.get(ROLE_ADMIN):
            planned.append({
                "recipient_type": ROLE_ADMIN,
                "recipient_identifier": SYSTEM_RECIPIENT,
                "channel": CHANNEL_EMAIL,
                "message": templates[ROLE_ADMIN].format_map(context),
                "metadata": metadata,
            })
        return planned

    # === Dispatch ===

    def _dispatch(self, order: models.Order, row: models.OrderNotification) -> bool:
        """Send one stored notification and record the outcome on its row."""
        try:
            if row.channel not in CHANNELS:
                result = {"success": False, "error": f"Unsupported channel: {row.channel}"}
            elif not channel_enabled(row.channel):
                result = {"success": False, "error": f"{_CHANNEL_LABELS[row.channel]} notifications disabled"}
            elif row.channel == CHANNEL_IN_APP:
                result = {"success": True}
            elif row.channel == CHANNEL_EMAIL:
                result = self._send_email(order, row)
            elif row.channel == CHANNEL_SMS:
                phone = self._resolve_phone(order, row)
                result = self.sms_sender.send(phone, row.message_content) if phone else {"success": False, "error": "No phone number on file"}
            else:
                result = self.push_sender.send(row.recipient_identifier, row.message_content)
        except Exception as e:
            logger.exception("notification_dispatch_failed id=%s channel=%s", row.id, row.channel)
            result = {"success": False, "error": str(e)}

        if result.get("success"):
            notifications_repo.mark_sent(self.db, row.id)
            return True
        notifications_repo.mark_failed(self.db, row.id, result.get("error") or "Unknown error")
        return False

    def _send_email(self, order: models.Order, row: models.OrderNotification) -> Dict[str, Any]:
        to_email = self._resolve_email(row)
        if not to_email:
            return {"success": False, "error": "No email address for recipient"}
        subject = f"Order #{order.order_number}: {row.notification_type.replace('_', ' ').capitalize()}"
        html_content, text_content = self.email_service.render_template(
            TEMPLATE_ORDER_NOTIFICATION,
            {
                "subject": subject,
                "message": row.message_content,
                "order_number": order.order_number,
                "customer_name": order.customer_name,
                "recipient_type": row.recipient_type,
                "tracking_url": build_order_tracking_link(order.access_token) if row.recipient_type == ROLE_CLIENT else None,
            },
        )
        return asyncio.run(self.email_service.send_email(
            to_email=to_email,
            subject=subject,
            html_content=html_content,
            text_content=text_content,
        ))

    def _resolve_email(self, row: models.OrderNotification) -> Optional[str]:
        identifier = row.recipient_identifier
        if identifier == SYSTEM_RECIPIENT:
            return os.getenv("ADMIN_NOTIFICATION_EMAIL") or identifier
        if "@" in identifier:
            return identifier
        user = self._user_for_identifier(identifier)
        return user.email if user else None

    def _resolve_phone(self, order: models.Order, row: models.OrderNotification) -> Optional[str]:
        if row.recipient_type == ROLE_CLIENT:
            return order.customer_phone or (row.metadata_json or {}).get("phone")
        user = self._user_for_identifier(row.recipient_identifier)
        return user.phone if user else None

    def _user_for_identifier(self, identifier: str) -> Optional[models.User]:
        try:
            return users_repo.get_user(self.db, uuid.UUID(identifier))
        except ValueError:
            return users_repo.get_user_by_email(self.db, identifier)

    # === Direct notifications ===

    def notify_status_change(self, order: models.Order, new_status: str) -> models.OrderNotification:
        """In-app status message for the customer (``status_<status>``). Does not commit."""
        message = STATUS_MESSAGES.get(new_status, f"Order status updated to {new_status}")
        return notifications_repo.create_notification(
            self.db,
            order_id=order.id,
            notification_type=f"status_{new_status}",
            recipient_type=ROLE_CLIENT,
            recipient_identifier=order.customer_email,
            channel=CHANNEL_IN_APP,
            message_content=message,
            metadata={"new_status": new_status},
            status="sent",
        )

    def notify_direct(
        self,
        order: models.Order,
        notification_type: str,
        recipient_type: str,
        recipient_identifier: str,
        message: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> models.OrderNotification:
        """Store an in-app notification for one recipient. Does not commit."""
        return notifications_repo.create_notification(
            self.db,
            order_id=order.id,
            notification_type=notification_type,
            recipient_type=recipient_type,
            recipient_identifier=recipient_identifier,
            channel=CHANNEL_IN_APP,
            message_content=message,
            metadata=metadata,
            status="sent",
        )

    # === Inbox ===

    def list_for_recipient(self, identifiers: List[str], unread_only: bool = False, limit: int = 50) -> List[models.OrderNotification]:
        return notifications_repo.get_for_recipient(self.db, identifiers, unread_only=unread_only, limit=limit)

    def get_unread_count(self, identifiers: List[str]) -> int:
        return notifications_repo.count_for_recipient(self.db, identifiers, unread_only=True)

    def get_total_count(self, identifiers: List[str]) -> int:
        return notifications_repo.count_for_recipient(self.db, identifiers)

    def mark_read(self, notification_id: uuid.UUID, identifiers: List[str]) -> bool:
        """
        Mark a notification as read for its recipient.
        Returns False if the notification does not exist or belongs to someone else.
        """
        row = notifications_repo.get_notification(self.db, notification_id)
        if row is None or row.recipient_identifier not in identifiers:
            return False
        if row.read_at is None:
            row.read_at = now_utc()
            self.db.commit()
        return True
