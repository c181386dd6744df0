import logging
from email.utils import formataddr
from typing import Dict, List, Optional

from mail_transport import ConfigurationError, MailTransport
from order_email import (
    customer_subject,
    owner_subject,
    render_customer_html,
    render_owner_html,
    render_text,
)

logger = logging.getLogger(__name__)

DEFAULT_FROM_EMAIL = "no-reply@yarnlychic.test"
DEFAULT_SENDER_NAME = "Yarnly Chic"


class OrderEmailDispatcher:
    """Render and send the merchant and customer emails for one order.

    The merchant email is always sent first. The customer email follows only
    when the order carries a customer address. Any failure, including one on
    the customer email after the merchant was notified, is raised to the
    caller.
    """

    def __init__(
        self,
        transport: Optional[MailTransport],
        from_email: str = DEFAULT_FROM_EMAIL,
        owner_email: str = "",
        sender_name: str = DEFAULT_SENDER_NAME,
        currency: str = "Ksh",
        configuration_error: Optional[str] = None,
    ):
        self.transport = transport
        self.from_email = (from_email or "").strip() or DEFAULT_FROM_EMAIL
        self.owner_email = (owner_email or "").strip()
        self.sender_name = (sender_name or "").strip() or DEFAULT_SENDER_NAME
        self.currency = currency or "Ksh"
        self.configuration_error = configuration_error

    @property
    def sender(self) -> str:
        return formataddr((self.sender_name, self.from_email))

    @property
    def owner_recipient(self) -> str:
        if "@" in self.owner_email:
            return self.owner_email
        return self.from_email

    def readiness(self) -> Dict[str, object]:
        return {
            "configured": self.transport is not None,
            "transport": self.transport.name if self.transport else None,
            "error": self.configuration_error,
        }

    def _require_transport(self) -> MailTransport:
        if self.transport is None:
            raise ConfigurationError(
                self.configuration_error
                or "No mail transport configured. Set MAILTRAP_API_TOKEN, "
                "RESEND_API_KEY or SMTP_HOST."
            )
        return self.transport

    def build_messages(self, order: Dict) -> List[Dict[str, str]]:
        text = render_text(order, self.currency)
        messages = [
            {
                "to": self.owner_recipient,
                "subject": owner_subject(order),
                "html": render_owner_html(order, self.currency),
                "text": text,
            }
        ]
        customer_email = order["customer"]["email"]
        if customer_email:
            messages.append(
                {
                    "to": customer_email,
                    "subject": customer_subject(order),
                    "html": render_customer_html(
                        order, self.currency, self.sender_name
                    ),
                    "text": text,
                }
            )
        return messages

    def dispatch(self, order: Dict) -> Dict[str, object]:
        transport = self._require_transport()
        messages = self.build_messages(order)

        recipients: List[str] = []
        for message in messages:
            message_id = transport.send_message(
                self.sender,
                message["to"],
                message["subject"],
                message["html"],
                message["text"],
            )
            logger.info(
                "Sent '%s' to %s via %s (message id: %s)",
                message["subject"],
                message["to"],
                transport.name,
                message_id or "n/a",
            )
            recipients.append(message["to"])

        return {"ok": True, "recipients": recipients}
