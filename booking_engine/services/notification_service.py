"""
Notification dispatcher - records notification intents and delivers them.

emit() only persists an outbox row, so booking transitions never wait on
an email or SMS gateway. deliver_pending() runs from a background job and
pushes rows through the configured providers:
- email: console (dev) or SMTP
- SMS: none, console (dev) or Twilio
"""
import smtplib
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple
from uuid import UUID, uuid4

from twilio.rest import Client

from booking_engine.lib.errors import NotFoundException
from booking_engine.lib.logging import get_logger, log_with_context
from booking_engine.lib.metrics import get_metrics_collector
from booking_engine.lib.settings import Settings, settings as default_settings
from booking_engine.models.notifications import Audience, DeliveryStatus, IntentKind, Notification


logger = get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Channel(str, Enum):
    EMAIL = "email"
    SMS = "sms"


class NotificationProvider(ABC):
    """
    Abstract base class for notification delivery providers.
    """

    @abstractmethod
    def send(self, to: str, subject: str, message: str) -> bool:
        """
        Send one message.

        Args:
            to: Recipient identifier (email address or E.164 phone number)
            subject: Subject line (ignored by SMS providers)
            message: Plain-text body

        Returns:
            True if sent successfully, False otherwise
        """

    @property
    @abstractmethod
    def channel(self) -> Channel:
        """Return the channel this provider supports."""


class ConsoleProvider(NotificationProvider):
    """
    Console provider for development/testing.
    Logs messages instead of sending them.
    """

    def __init__(self, channel: Channel = Channel.EMAIL):
        self._channel = channel

    @property
    def channel(self) -> Channel:
        return self._channel

    def send(self, to: str, subject: str, message: str) -> bool:
        log_with_context(
            logger, "info", "Notification logged to console",
            channel=self._channel.value, to=to, subject=subject, body=message,
        )
        return True


class SmtpEmailProvider(NotificationProvider):
    """Email provider using SMTP (SSL on port 465, STARTTLS otherwise)."""

    def __init__(self, settings: Optional[Settings] = None):
        settings = settings or default_settings
        if not settings.smtp_username or not settings.smtp_password:
            raise ValueError(
                "SMTP credentials not configured. "
                "Set SMTP_USERNAME and SMTP_PASSWORD environment variables."
            )
        self.smtp_host = settings.smtp_host
        self.smtp_port = settings.smtp_port
        self.smtp_username = settings.smtp_username
        self.smtp_password = settings.smtp_password
        self.from_email = settings.smtp_from_email or settings.smtp_username
        self.from_name = settings.smtp_from_name

    @property
    def channel(self) -> Channel:
        return Channel.EMAIL

    def send(self, to: str, subject: str, message: str) -> bool:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = to
        msg.attach(MIMEText(message, "plain"))

        try:
            if self.smtp_port == 465:
                with smtplib.SMTP_SSL(self.smtp_host, self.smtp_port) as server:
                    server.login(self.smtp_username, self.smtp_password)
                    server.send_message(msg)
            else:
                with smtplib.SMTP(self.smtp_host, self.smtp_port) as server:
                    server.starttls()
                    server.login(self.smtp_username, self.smtp_password)
                    server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send email via SMTP: {e}", extra={"extra_fields": {"to": to}})
            return False

        logger.info("Email sent via SMTP", extra={"extra_fields": {"to": to}})
        return True


class TwilioSMSProvider(NotificationProvider):
    """
    Twilio SMS provider for sending text messages.
    """

    def __init__(self, settings: Optional[Settings] = None, client: Optional[Client] = None):
        settings = settings or default_settings
        self.from_number = settings.twilio_from_number
        self.client = client or Client(settings.twilio_account_sid, settings.twilio_auth_token)
        logger.info("Twilio SMS provider initialized")

    @property
    def channel(self) -> Channel:
        return Channel.SMS

    def send(self, to: str, subject: str, message: str) -> bool:
        try:
            msg = self.client.messages.create(body=message, from_=self.from_number, to=to)
        except Exception as e:
            logger.error(f"Failed to send SMS via Twilio: {e}", extra={"extra_fields": {"to": to}})
            return False
        logger.info(f"SMS sent via Twilio: {msg.sid}", extra={"extra_fields": {"to": to}})
        return True


def build_email_provider(settings: Settings) -> NotificationProvider:
    if settings.notification_channel == "smtp":
        return SmtpEmailProvider(settings)
    return ConsoleProvider(Channel.EMAIL)


def build_sms_provider(settings: Settings) -> Optional[NotificationProvider]:
    if settings.sms_provider == "twilio" and settings.twilio_account_sid:
        return TwilioSMSProvider(settings)
    if settings.sms_provider == "console":
        return ConsoleProvider(Channel.SMS)
    return None


# ===== Templates =====

def _when(payload: Dict[str, Any], key: str = "start_time") -> str:
    value = payload.get(key)
    if not value:
        return "N/A"
    return datetime.fromisoformat(value).strftime("%A, %B %d, %Y at %H:%M")


def _new_booking(p):
    return (
        f"New Booking: {p['service_name']}",
        f"You have received a new booking!\n\n"
        f"Service: {p['service_name']}\n"
        f"Client: {p['client_name']} <{p['client_email']}>\n"
        f"Date & time: {_when(p)}\n",
    )


def _confirmed(p):
    return (
        f"Appointment Confirmed: {p['service_name']}",
        f"Hello {p['client_name']},\n\n"
        f"Your appointment for {p['service_name']} on {_when(p)} has been confirmed.\n",
    )


def _cancelled_business(p):
    return (
        f"Booking Cancelled: {p['service_name']}",
        f"The booking of {p['client_name']} for {p['service_name']} on {_when(p)} "
        f"was cancelled by the {p.get('cancelled_by', 'business')}.\n",
    )


def _cancelled_customer(p):
    if p.get("cancelled_by") == "business":
        closing = "We apologize for any inconvenience. Please feel free to book a new appointment."
    else:
        closing = "If you need to reschedule, please book a new appointment."
    return (
        f"Appointment Cancelled: {p['service_name']}",
        f"Hello {p['client_name']},\n\n"
        f"Your appointment for {p['service_name']} on {_when(p)} has been cancelled.\n{closing}\n",
    )


def _rescheduled(p):
    return (
        f"Booking Rescheduled: {p['service_name']}",
        f"{p['client_name']} moved their booking for {p['service_name']}.\n\n"
        f"Previous time: {_when(p, 'previous_start')}\n"
        f"New time: {_when(p, 'new_start')}\n",
    )


def _completed(p):
    return (
        f"Appointment Completed: {p['service_name']}",
        f"Hello {p['client_name']},\n\n"
        f"Thank you for visiting us for {p['service_name']}.\n"
        f"We would love to hear about your experience: {p.get('review_url', '')}\n",
    )


def _new_review(p):
    comment = p.get("comment") or "(no comment)"
    return (
        f"New Review Received: {p['service_name']}",
        f"{p['client_name']} rated {p['service_name']} {p.get('rating')}/5.\n\n{comment}\n",
    )


def _reminder(p):
    tomorrow = p.get("reminder_type") == "day"
    label = "Appointment Tomorrow" if tomorrow else "Appointment in 1 Hour"
    return (
        f"Reminder: {label} - {p['service_name']}",
        f"This is a reminder that you have an appointment {'tomorrow' if tomorrow else 'in 1 hour'}.\n\n"
        f"Service: {p['service_name']}\n"
        f"Client: {p['client_name']} <{p['client_email']}>\n"
        f"Date & time: {_when(p)}\n",
    )


TEMPLATES: Dict[Tuple[IntentKind, Audience], Callable[[Dict[str, Any]], Tuple[str, str]]] = {
    (IntentKind.NEW_BOOKING, Audience.BUSINESS): _new_booking,
    (IntentKind.BOOKING_CONFIRMED, Audience.CUSTOMER): _confirmed,
    (IntentKind.BOOKING_CANCELLED, Audience.BUSINESS): _cancelled_business,
    (IntentKind.BOOKING_CANCELLED, Audience.CUSTOMER): _cancelled_customer,
    (IntentKind.BOOKING_RESCHEDULED, Audience.BUSINESS): _rescheduled,
    (IntentKind.BOOKING_COMPLETED, Audience.CUSTOMER): _completed,
    (IntentKind.NEW_REVIEW, Audience.BUSINESS): _new_review,
    (IntentKind.BOOKING_REMINDER, Audience.BUSINESS): _reminder,
}


def render(kind: IntentKind, audience: Audience, payload: Dict[str, Any]) -> Tuple[str, str]:
    """Subject and plain-text body for one audience of an intent."""
    template = TEMPLATES.get((IntentKind(kind), Audience(audience)))
    if template is None:
        raise ValueError(f"No template for {kind} to {audience}")
    return template(payload)


def booking_payload(booking, service_name: Optional[str] = None) -> Dict[str, Any]:
    """JSON-safe snapshot of the booking fields templates need."""
    return {
        "booking_id": str(booking.id),
        "service_id": str(booking.service_id),
        "service_name": service_name or "Appointment",
        "staff_id": str(booking.staff_id) if booking.staff_id else None,
        "client_name": booking.client_name,
        "client_email": booking.client_email,
        "client_phone": booking.client_phone,
        "start_time": booking.start_time.isoformat(),
        "end_time": booking.end_time.isoformat(),
        "status": getattr(booking.status, "value", booking.status),
    }


class NotificationDispatcher:
    """
    Outbox-backed notification dispatcher.

    Handles:
    - Persisting intents (emit) without blocking the caller
    - Recipient resolution per audience
    - Delivery with attempt tracking and a failure cap
    - Acknowledgement and expiry of rows
    """

    def __init__(
        self,
        store,
        settings: Optional[Settings] = None,
        email_provider: Optional[NotificationProvider] = None,
        sms_provider: Optional[NotificationProvider] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.settings = settings or default_settings
        self.email_provider = email_provider or build_email_provider(self.settings)
        self.sms_provider = sms_provider if sms_provider is not None else build_sms_provider(self.settings)
        self.clock = clock
        self.metrics = get_metrics_collector()

    def emit(
        self,
        kind: IntentKind,
        audiences: Iterable[Audience],
        payload: Dict[str, Any],
        booking_id: Optional[UUID] = None,
    ) -> Optional[Notification]:
        """
        Record an intent for later delivery.

        Never raises: a failure to record is logged and reported as None.
        """
        now = self.clock()
        notification = Notification(
            id=uuid4(),
            booking_id=booking_id,
            kind=IntentKind(kind),
            audiences=[Audience(a).value for a in audiences],
            payload=payload,
            delivery_status=DeliveryStatus.PENDING,
            attempts=0,
            delivered_to=[],
            created_at=now,
            expires_at=now + timedelta(days=self.settings.notification_ttl_days),
        )
        try:
            stored = self.store.add_notification(notification)
        except Exception:
            logger.error(
                "Failed to record notification intent",
                extra={"extra_fields": {"kind": notification.kind.value, "booking_id": str(booking_id)}},
                exc_info=True,
            )
            self.metrics.increment_notifications_failed(notification.kind.value, "outbox")
            return None

        self.metrics.increment_notifications_emitted(notification.kind.value)
        log_with_context(
            logger, "info", "Notification intent recorded",
            notification_id=str(stored.id), kind=stored.kind.value,
            audiences=stored.audiences, booking_id=str(booking_id) if booking_id else None,
        )
        return stored

    # ===== Delivery =====

    def _recipients(self, audience: Audience, payload: Dict[str, Any]) -> List[Tuple[NotificationProvider, str]]:
        if audience == Audience.BUSINESS:
            email = self.settings.business_notification_email
            return [(self.email_provider, email)] if email else []

        recipients = []
        if payload.get("client_email"):
            recipients.append((self.email_provider, payload["client_email"]))
        if self.sms_provider is not None and payload.get("client_phone"):
            recipients.append((self.sms_provider, payload["client_phone"]))
        return recipients

    def deliver(self, notification: Notification) -> bool:
        """
        Send one row to every recipient not reached yet; returns True when all sends succeeded.

        Recipients reached on an earlier attempt are listed in delivered_to
        as "channel:audience" and skipped on retry. A row whose template
        cannot be rendered is marked failed without further attempts.
        """
        delivered = list(notification.delivered_to or [])
        errors = []
        attempts = notification.attempts + 1
        for audience in notification.audiences:
            audience = Audience(audience)
            try:
                subject, body = render(notification.kind, audience, notification.payload)
            except (KeyError, TypeError, ValueError) as e:
                logger.error(
                    f"Cannot render notification: {e}",
                    extra={"extra_fields": {"notification_id": str(notification.id), "audience": audience.value}},
                    exc_info=True,
                )
                self.metrics.increment_notifications_failed(notification.kind.value, "render")
                self.store.update_notification(
                    notification.id,
                    {
                        "attempts": attempts,
                        "delivery_status": DeliveryStatus.FAILED,
                        "last_error": f"render:{audience.value}: {e}"[:1000],
                        "delivered_to": delivered,
                    },
                )
                return False

            recipients = self._recipients(audience, notification.payload)
            if not recipients:
                log_with_context(
                    logger, "warning", "No recipient configured for notification",
                    notification_id=str(notification.id), audience=audience.value,
                )
            for provider, to in recipients:
                key = f"{provider.channel.value}:{audience.value}"
                if key in delivered:
                    continue
                try:
                    sent = provider.send(to, subject, body)
                except Exception as e:
                    logger.error(
                        f"Error sending notification: {e}",
                        extra={"extra_fields": {"notification_id": str(notification.id)}},
                        exc_info=True,
                    )
                    sent = False
                if sent:
                    delivered.append(key)
                    self.metrics.increment_notifications_delivered(notification.kind.value, provider.channel.value)
                else:
                    self.metrics.increment_notifications_failed(notification.kind.value, provider.channel.value)
                    errors.append(key)

        if errors:
            status = (
                DeliveryStatus.FAILED
                if attempts >= self.settings.notification_max_attempts
                else DeliveryStatus.PENDING
            )
            changes = {
                "attempts": attempts,
                "delivery_status": status,
                "last_error": ", ".join(errors),
                "delivered_to": delivered,
            }
        else:
            changes = {
                "attempts": attempts,
                "delivery_status": DeliveryStatus.SENT,
                "sent_at": self.clock(),
                "delivered_to": delivered,
            }
        self.store.update_notification(notification.id, changes)
        return not errors

    def deliver_pending(self, limit: Optional[int] = None) -> Dict[str, int]:
        """Deliver a batch of pending rows; returns sent/failed counts."""
        pending = self.store.list_notifications(
            delivery_status=DeliveryStatus.PENDING,
            active_at=self.clock(),
            max_attempts=self.settings.notification_max_attempts,
            limit=limit or self.settings.notification_batch_size,
        )
        counts = {"sent": 0, "failed": 0}
        for notification in pending:
            if self.deliver(notification):
                counts["sent"] += 1
            else:
                counts["failed"] += 1
        if pending:
            log_with_context(logger, "info", "Notification delivery batch finished", **counts)
        return counts

    # ===== Inbox =====

    def list_for(self, audience: Audience, include_acknowledged: bool = False) -> List[Notification]:
        return self.store.list_notifications(
            audience=Audience(audience).value,
            include_acknowledged=include_acknowledged,
            active_at=self.clock(),
        )

    def acknowledge(self, notification_id: UUID) -> Notification:
        existing = self.store.get_notification(notification_id)
        if existing is None:
            raise NotFoundException("Notification", str(notification_id))
        if existing.acknowledged_at is not None:
            return existing
        return self.store.update_notification(notification_id, {"acknowledged_at": self.clock()})

    def purge_expired(self) -> int:
        purged = self.store.purge_expired_notifications(self.clock())
        if purged:
            log_with_context(logger, "info", "Expired notifications purged", count=purged)
        return purged
