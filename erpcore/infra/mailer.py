from __future__ import annotations

import os
from dataclasses import dataclass, field
from html import escape
from typing import Protocol

import httpx

RESEND_API_KEY = os.getenv("RESEND_API_KEY")
RESEND_API_URL = os.getenv("RESEND_API_URL", "https://api.resend.com/emails")
RESEND_FROM_EMAIL = os.getenv("RESEND_FROM_EMAIL", "billing@example.com")
RESEND_REPLY_TO = os.getenv("RESEND_REPLY_TO", "")
APP_URL = os.getenv("APP_URL", "http://localhost:3000")
CURRENCY_SYMBOL = os.getenv("BILLING_CURRENCY_SYMBOL", "₦")
SENDER_NAME = "Cave ERP"


class NotificationError(Exception):
    pass


@dataclass(frozen=True)
class InvoiceLine:
    description: str
    amount: str


@dataclass(frozen=True)
class InvoiceNotification:
    to: str
    invoice_id: str
    amount: float
    due_date: str
    items: list[InvoiceLine] = field(default_factory=list)
    payment_link: str = ""


@dataclass(frozen=True)
class OverdueNotification:
    to: str
    user_name: str
    invoice_id: str
    amount: float
    due_date: str
    days_overdue: int


class Notifier(Protocol):
    def send_invoice(self, notification: InvoiceNotification) -> None: ...

    def send_overdue_notice(self, notification: OverdueNotification) -> None: ...


def format_currency(value: float | str, symbol: str = CURRENCY_SYMBOL) -> str:
    return f"{symbol}{float(value):,.2f}"


def _billing_url() -> str:
    return f"{APP_URL.rstrip('/')}/settings/billing"


def render_invoice_email(notification: InvoiceNotification) -> tuple[str, str, str]:
    pay_url = notification.payment_link or _billing_url()
    subject = f"New Invoice Available - {notification.invoice_id}"
    items_text = "\n".join(
        f"{item.description}: {format_currency(item.amount)}" for item in notification.items
    )
    text = (
        "Hello,\n\nA new invoice has been generated for your account.\n\n"
        f"Invoice #{notification.invoice_id}\n"
        f"Due Date: {notification.due_date}\n"
        f"Total Amount: {format_currency(notification.amount)}\n\n"
        f"Items:\n{items_text}\n\n"
        f"Pay Now: {pay_url}\n"
        f"View Invoice Details: {_billing_url()}\n\n"
        "Thank you for your business!\nThe Cave Team"
    )
    rows = "".join(
        f"<tr><td>{escape(item.description)}</td>"
        f"<td style=\"text-align: right;\">{escape(format_currency(item.amount))}</td></tr>"
        for item in notification.items
    )
    html = (
        "<div style=\"font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;\">"
        "<h2>New Invoice Available</h2>"
        f"<p>Invoice #{escape(notification.invoice_id)}</p>"
        f"<p>Due Date: {escape(notification.due_date)}</p>"
        f"<p>Total Amount: <strong>{escape(format_currency(notification.amount))}</strong></p>"
        f"<h3>Invoice Items</h3><table style=\"width: 100%;\">{rows}</table>"
        f"<p><a href=\"{escape(pay_url)}\">Pay Now</a></p>"
        f"<p><a href=\"{escape(_billing_url())}\">View Invoice Details</a></p>"
        "<p>Thank you for your business!</p>"
        "</div>"
    )
    return subject, html, text


def render_overdue_email(notification: OverdueNotification) -> tuple[str, str, str]:
    pay_url = _billing_url()
    amount = format_currency(notification.amount)
    subject = f"Overdue Invoice Reminder - {notification.invoice_id}"
    text = (
        f"Hello {notification.user_name},\n\n"
        "This is a friendly reminder that we haven't received payment for invoice "
        f"#{notification.invoice_id}, which was due on {notification.due_date}.\n\n"
        f"Amount Due: {amount}\nDays Overdue: {notification.days_overdue}\n\n"
        "Please make the payment as soon as possible to avoid any service interruption.\n\n"
        f"Pay Now: {pay_url}\n\n"
        "If you have already made this payment, please disregard this email.\n\nThe Cave Team"
    )
    html = (
        "<div style=\"font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;\">"
        "<h2>Payment Overdue</h2>"
        f"<p>Hello {escape(notification.user_name)},</p>"
        f"<p>Invoice #{escape(notification.invoice_id)} was due on "
        f"{escape(notification.due_date)}.</p>"
        f"<p>Amount Due: <strong>{escape(amount)}</strong></p>"
        f"<p>Days Overdue: {notification.days_overdue} days</p>"
        f"<p><a href=\"{escape(pay_url)}\">Pay Now</a></p>"
        "</div>"
    )
    return subject, html, text


class ResendMailer:
    def __init__(
        self,
        api_key: str | None = RESEND_API_KEY,
        *,
        api_url: str = RESEND_API_URL,
        sender: str = RESEND_FROM_EMAIL,
        reply_to: str = RESEND_REPLY_TO,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._api_url = api_url
        self._sender = sender
        self._reply_to = reply_to
        self._transport = transport

    def _send(self, *, to: str, subject: str, html: str, text: str) -> None:
        if not self._api_key:
            raise NotificationError("RESEND_API_KEY is not configured")
        payload: dict[str, object] = {
            "from": f"{SENDER_NAME} <{self._sender}>",
            "to": [to],
            "subject": subject,
            "html": html,
            "text": text,
        }
        if self._reply_to:
            payload["reply_to"] = self._reply_to
        try:
            with httpx.Client(timeout=10.0, transport=self._transport) as client:
                response = client.post(
                    self._api_url,
                    json=payload,
                    headers={"Authorization": f"Bearer {self._api_key}"},
                )
        except httpx.HTTPError as exc:
            raise NotificationError(f"failed to send email: {exc}") from exc
        if response.status_code >= 400:
            raise NotificationError(
                f"failed to send email: {response.status_code} {response.text}"
            )

    def send_invoice(self, notification: InvoiceNotification) -> None:
        subject, html, text = render_invoice_email(notification)
        self._send(to=notification.to, subject=subject, html=html, text=text)

    def send_overdue_notice(self, notification: OverdueNotification) -> None:
        subject, html, text = render_overdue_email(notification)
        self._send(to=notification.to, subject=subject, html=html, text=text)
