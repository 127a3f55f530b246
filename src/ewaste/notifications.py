"""Outbound customer and agent notifications.

Services never talk to the mail relay. They build a ``Message`` with one of
the template functions below and hand it to ``NotificationDispatcher``,
which queues it for a background worker that sends with retries. Nothing
in here raises into the caller.

Inside ``NotificationDispatcher.deferred()`` messages wait in an ``Outbox``
and reach the queue only when the outbox is released after a commit.
"""
from __future__ import annotations

import logging
import smtplib
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from queue import Empty, Queue
from typing import Iterator, Optional, Protocol

from .config import MailConfig

logger = logging.getLogger(__name__)

_STOP = object()


@dataclass(frozen=True)
class Message:
    to: str
    subject: str
    body: str
    kind: str = "generic"


class Mailer(Protocol):
    def send(self, message: Message) -> None: ...


class SmtpMailer:
    def __init__(self, cfg: MailConfig, timeout: float = 15.0) -> None:
        self.cfg = cfg
        self.timeout = timeout

    def send(self, message: Message) -> None:
        mime = MIMEMultipart()
        mime["From"] = self.cfg.sender
        mime["To"] = message.to
        mime["Subject"] = message.subject
        mime.attach(MIMEText(message.body, "plain"))

        server = smtplib.SMTP(self.cfg.host, self.cfg.port, timeout=self.timeout)
        try:
            if self.cfg.use_tls:
                server.starttls()
            if self.cfg.user:
                server.login(self.cfg.user, self.cfg.password)
            server.sendmail(self.cfg.sender, [message.to], mime.as_string())
        finally:
            server.quit()


class LoggingMailer:
    """Used when mail is disabled; records what would have been sent."""

    def send(self, message: Message) -> None:
        logger.info("Mail disabled, not sending %s to %s: %s", message.kind, message.to, message.subject)


class Outbox:
    """Messages held back until the change that produced them is committed."""

    def __init__(self, dispatcher: "NotificationDispatcher") -> None:
        self.dispatcher = dispatcher
        self.messages: list[Message] = []

    def release(self) -> None:
        messages, self.messages = self.messages, []
        for message in messages:
            self.dispatcher._enqueue(message)


class NotificationDispatcher:
    def __init__(self, mailer: Mailer, *, max_retries: int = 3, retry_backoff: float = 2.0) -> None:
        self.mailer = mailer
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff
        self.queue: Queue = Queue()
        self._worker: Optional[threading.Thread] = None
        self._local = threading.local()
        self.sent = 0
        self.failed = 0

    @classmethod
    def from_config(cls, cfg: MailConfig) -> "NotificationDispatcher":
        mailer: Mailer = SmtpMailer(cfg) if cfg.enabled else LoggingMailer()
        return cls(mailer, max_retries=cfg.max_retries, retry_backoff=cfg.retry_backoff)

    def start(self) -> None:
        if self._worker is not None and self._worker.is_alive():
            return
        self._worker = threading.Thread(target=self._run, name="notification-worker", daemon=True)
        self._worker.start()

    def stop(self, timeout: float | None = None) -> None:
        if self._worker is None:
            return
        self.queue.put(_STOP)
        self._worker.join(timeout)
        self._worker = None

    @contextmanager
    def deferred(self) -> Iterator[Outbox]:
        """Hold messages dispatched on this thread in an ``Outbox``.

        Whatever has not been released when the block exits is discarded,
        so a rolled back change never produces mail.
        """
        outbox = Outbox(self)
        previous = getattr(self._local, "outbox", None)
        self._local.outbox = outbox
        try:
            yield outbox
        finally:
            self._local.outbox = previous
            if outbox.messages:
                logger.info("Discarding %d notification(s) of an uncommitted change", len(outbox.messages))

    def dispatch(self, message: Optional[Message]) -> None:
        if message is None:
            return
        if not message.to:
            logger.warning("Dropping %s notification without recipient", message.kind)
            return
        outbox = getattr(self._local, "outbox", None)
        if outbox is not None:
            outbox.messages.append(message)
            return
        self._enqueue(message)

    def _enqueue(self, message: Message) -> None:
        try:
            self.queue.put_nowait(message)
        except Exception as e:
            logger.error("Failed to queue %s notification for %s: %s", message.kind, message.to, e)

    def drain(self) -> None:
        """Deliver everything queued so far on the calling thread."""
        while True:
            try:
                item = self.queue.get_nowait()
            except Empty:
                return
            try:
                if item is not _STOP:
                    self._deliver(item)
            finally:
                self.queue.task_done()

    def _run(self) -> None:
        while True:
            item = self.queue.get()
            try:
                if item is _STOP:
                    return
                self._deliver(item)
            finally:
                self.queue.task_done()

    def _deliver(self, message: Message) -> None:
        attempts = self.max_retries + 1
        last_exc: Exception | None = None
        for attempt in range(1, attempts + 1):
            try:
                self.mailer.send(message)
                self.sent += 1
                logger.info("Sent %s notification to %s", message.kind, message.to)
                return
            except Exception as e:
                last_exc = e
                if attempt < attempts:
                    sleep_for = self.retry_backoff * (2 ** (attempt - 1))
                    logger.warning(
                        "Retry %s/%s for %s notification to %s in %.1fs due to: %s",
                        attempt,
                        attempts - 1,
                        message.kind,
                        message.to,
                        sleep_for,
                        e,
                    )
                    time.sleep(sleep_for)
        self.failed += 1
        logger.error("Giving up on %s notification to %s: %s", message.kind, message.to, last_exc)


def _full_name(user: dict) -> str:
    return f"{user.get('first_name', '')} {user.get('last_name', '')}".strip()


def order_confirmation(order: dict, customer: dict, frontend_url: str = "") -> Message:
    pricing = order["pricing"]
    body = (
        f"Hello {customer.get('first_name', '')},\n\n"
        f"Your e-waste pickup order {order['order_number']} has been received.\n"
        f"Pickup PIN: {order['pin_verification']['pin']}\n"
        f"Items: {len(order['items'])}\n"
        f"Estimated value: {pricing['estimated_total']}\n"
        f"Pickup date: {order['pickup_details']['preferred_date']}\n\n"
        "Keep the PIN ready and share it with the pickup executive at collection time.\n"
    )
    if frontend_url:
        body += f"\nTrack your order: {frontend_url}/dashboard/pickups/{order['id']}\n"
    return Message(
        to=customer.get("email", ""),
        subject=f"Order Confirmed - {order['order_number']}",
        body=body,
        kind="order_confirmation",
    )


def pickup_assigned(order: dict, customer: dict, agent: dict) -> Message:
    body = (
        f"Hello {customer.get('first_name', '')},\n\n"
        f"{_full_name(agent)} ({agent.get('phone', '')}) will collect order {order['order_number']}.\n"
        f"Preferred slot: {order['pickup_details']['preferred_date']} ({order['pickup_details']['time_slot']}).\n"
    )
    return Message(
        to=customer.get("email", ""),
        subject=f"Pickup Executive Assigned - {order['order_number']}",
        body=body,
        kind="pickup_assigned",
    )


def new_assignment(order: dict, agent: dict) -> Message:
    address = order["pickup_details"]["address"]
    body = (
        f"Hello {agent.get('first_name', '')},\n\n"
        f"You have a new pickup: {order['order_number']}.\n"
        f"Address: {address['street']}, {address['city']}, {address['state']} - {address['pincode']}\n"
        f"Contact: {order['pickup_details']['contact_number']}\n"
        f"Slot: {order['pickup_details']['preferred_date']} ({order['pickup_details']['time_slot']})\n"
    )
    return Message(
        to=agent.get("email", ""),
        subject=f"New Pickup Assignment - {order['order_number']}",
        body=body,
        kind="new_assignment",
    )


def order_completed(order: dict, customer: dict) -> Message:
    pricing = order["pricing"]
    amount = pricing.get("actual_total") or pricing["final_amount"]
    body = (
        f"Hello {customer.get('first_name', '')},\n\n"
        f"Order {order['order_number']} is complete. Final amount: {amount}.\n"
        "Thank you for recycling responsibly.\n"
    )
    return Message(
        to=customer.get("email", ""),
        subject=f"Order Completed - {order['order_number']}",
        body=body,
        kind="order_completed",
    )


def ticket_created(ticket: dict, customer: dict) -> Message:
    body = (
        f"Hello {customer.get('first_name', '')},\n\n"
        f"We received your support ticket {ticket['ticket_number']}.\n"
        f"Subject: {ticket['subject']}\n"
        f"Priority: {ticket['priority']}\n\n"
        "Our team will get back to you soon.\n"
    )
    return Message(
        to=customer.get("email", ""),
        subject=f"Support Ticket Created - {ticket['ticket_number']}",
        body=body,
        kind="ticket_created",
    )


def password_reset(user: dict) -> Message:
    body = (
        f"Hello {user.get('first_name', '')},\n\n"
        "Your password has been reset by an administrator.\n"
        "Sign in with the temporary password you were given and change it right away.\n"
        "If you did not ask for this, contact support.\n"
    )
    return Message(
        to=user.get("email", ""),
        subject="Password Reset Notification",
        body=body,
        kind="password_reset",
    )
