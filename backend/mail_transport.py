"""Mail transports used to deliver order notifications.

Every transport exposes ``send_message(sender, to, subject, html, text)``.
A transport is built once per process by :func:`build_transport` and shared
by all requests, so implementations keep their client (HTTP session or SMTP
connection) open between sends.
"""

import logging
import smtplib
import ssl
import threading
from email.message import EmailMessage
from email.utils import parseaddr
from typing import Dict, List, Optional, Sequence, Union

import requests
import resend

logger = logging.getLogger(__name__)

DEFAULT_MAIL_API_URL = "https://send.api.mailtrap.io/api/send"
DEFAULT_TIMEOUT_SECONDS = 15.0

Recipients = Union[str, Sequence[str]]


class EmailError(Exception):
    """Base error for anything that prevents an email from being delivered."""


class ConfigurationError(EmailError):
    """No usable mail transport is configured."""


class TransportError(EmailError):
    """The mail provider could not be reached or rejected the message."""


def as_recipient_list(to: Recipients) -> List[str]:
    if isinstance(to, str):
        candidates = [to]
    else:
        candidates = list(to or [])
    recipients = [str(entry).strip() for entry in candidates if str(entry or "").strip()]
    if not recipients:
        raise TransportError("At least one recipient address is required.")
    return recipients


class MailTransport:
    name = "base"

    def send_message(
        self, sender: str, to: Recipients, subject: str, html: str, text: str
    ) -> Optional[str]:
        raise NotImplementedError

    def verify(self) -> None:
        """Check that the transport can be used; raise EmailError if not."""

    def close(self) -> None:
        pass


class HttpApiTransport(MailTransport):
    """JSON-over-HTTPS provider API authenticated with a bearer token."""

    name = "api"

    def __init__(
        self,
        api_token: str,
        api_url: str = DEFAULT_MAIL_API_URL,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
    ):
        self.api_token = (api_token or "").strip()
        self.api_url = (api_url or DEFAULT_MAIL_API_URL).strip()
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "Authorization": f"Bearer {self.api_token}",
                "Content-Type": "application/json",
            }
        )

    def verify(self) -> None:
        if not self.api_token:
            raise ConfigurationError("Mail API token is not configured.")

    def build_payload(
        self, sender: str, to: Recipients, subject: str, html: str, text: str
    ) -> Dict[str, object]:
        sender_name, sender_email = parseaddr(sender)
        from_field: Dict[str, str] = {"email": sender_email or sender}
        if sender_name:
            from_field["name"] = sender_name
        return {
            "from": from_field,
            "to": [{"email": address} for address in as_recipient_list(to)],
            "subject": subject,
            "html": html,
            "text": text,
        }

    def send_message(
        self, sender: str, to: Recipients, subject: str, html: str, text: str
    ) -> Optional[str]:
        payload = self.build_payload(sender, to, subject, html, text)
        try:
            response = self.session.post(
                self.api_url, json=payload, timeout=self.timeout
            )
        except requests.Timeout as exc:
            raise TransportError(
                f"Mail API timed out after {self.timeout:g}s"
            ) from exc
        except requests.RequestException as exc:
            raise TransportError(f"Mail API request failed: {exc}") from exc

        if not response.ok:
            raise TransportError(
                f"Mail API error {response.status_code}: {response.text}"
            )

        try:
            body = response.json()
        except ValueError:
            return None
        message_ids = body.get("message_ids") if isinstance(body, dict) else None
        if isinstance(message_ids, list) and message_ids:
            return str(message_ids[0])
        return None

    def close(self) -> None:
        self.session.close()


class ResendTransport(MailTransport):
    name = "resend"

    def __init__(self, api_key: str, timeout: float = DEFAULT_TIMEOUT_SECONDS):
        self.api_key = (api_key or "").strip()
        self.timeout = timeout
        if self.api_key:
            resend.api_key = self.api_key
        resend.default_http_client = resend.RequestsClient(timeout=timeout)

    def verify(self) -> None:
        if not self.api_key:
            raise ConfigurationError("Resend API key is not configured.")

    def send_message(
        self, sender: str, to: Recipients, subject: str, html: str, text: str
    ) -> Optional[str]:
        payload: Dict[str, object] = {
            "from": sender,
            "to": as_recipient_list(to),
            "subject": subject,
            "html": html,
            "text": text,
        }
        try:
            response = resend.Emails.send(payload)
        except Exception as exc:
            raise TransportError(f"Resend request failed: {exc}") from exc

        if not isinstance(response, dict) or not response.get("id"):
            raise TransportError(f"Unexpected Resend response: {response}")
        return str(response["id"])


class SmtpTransport(MailTransport):
    """Authenticated SMTP delivery over one shared, lock-guarded connection."""

    name = "smtp"

    def __init__(
        self,
        host: str,
        port: int = 587,
        username: str = "",
        password: str = "",
        use_tls: bool = True,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ):
        self.host = (host or "").strip()
        self.port = port
        self.username = username or ""
        self.password = password or ""
        self.use_tls = use_tls
        self.timeout = timeout
        self._connection: Optional[smtplib.SMTP] = None
        self._lock = threading.Lock()

    def _connect(self) -> smtplib.SMTP:
        context = ssl.create_default_context()
        if self.port == 465:
            server = smtplib.SMTP_SSL(
                self.host, self.port, context=context, timeout=self.timeout
            )
        else:
            server = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
        try:
            if self.port != 465 and self.use_tls:
                server.starttls(context=context)
            server.login(self.username, self.password)
        except (smtplib.SMTPException, OSError):
            server.close()
            raise
        return server

    def _discard_connection(self) -> None:
        if self._connection is None:
            return
        try:
            self._connection.quit()
        except (smtplib.SMTPException, OSError):
            self._connection.close()
        self._connection = None

    def _ensure_connection(self) -> smtplib.SMTP:
        if self._connection is not None:
            try:
                status, _ = self._connection.noop()
            except (smtplib.SMTPException, OSError):
                status = -1
            if status == 250:
                return self._connection
            self._discard_connection()
        self._connection = self._connect()
        return self._connection

    def verify(self) -> None:
        if not self.host:
            raise ConfigurationError("SMTP host is not configured.")
        if not self.username or not self.password:
            raise ConfigurationError("SMTP credentials are not configured.")
        with self._lock:
            try:
                self._ensure_connection()
            except (smtplib.SMTPException, OSError) as exc:
                raise TransportError(
                    f"SMTP server {self.host}:{self.port} is not reachable: {exc}"
                ) from exc

    def send_message(
        self, sender: str, to: Recipients, subject: str, html: str, text: str
    ) -> Optional[str]:
        recipients = as_recipient_list(to)

        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = sender
        message["To"] = ", ".join(recipients)
        message.set_content(text)
        message.add_alternative(html, subtype="html")

        with self._lock:
            try:
                connection = self._ensure_connection()
                connection.send_message(
                    message, from_addr=parseaddr(sender)[1] or sender, to_addrs=recipients
                )
            except (smtplib.SMTPException, OSError) as exc:
                self._discard_connection()
                raise TransportError(f"SMTP send failed: {exc}") from exc
        return None

    def close(self) -> None:
        with self._lock:
            self._discard_connection()


def _parse_bool(value, default: bool = True) -> bool:
    if value is None or str(value).strip() == "":
        return default
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def _parse_number(value, default, cast=float):
    try:
        return cast(value)
    except (TypeError, ValueError):
        return default


def build_transport(config: Dict[str, object]) -> Optional[MailTransport]:
    """Pick the transport described by the app configuration.

    ``MAIL_TRANSPORT`` forces a kind; otherwise the API token wins over the
    Resend key, which wins over SMTP. Returns ``None`` when nothing is
    configured and raises :class:`ConfigurationError` for an incomplete
    selection.
    """
    timeout = _parse_number(
        config.get("MAIL_TIMEOUT_SECONDS"), DEFAULT_TIMEOUT_SECONDS
    )
    api_token = str(config.get("MAIL_API_TOKEN") or "").strip()
    resend_key = str(config.get("RESEND_API_KEY") or "").strip()
    smtp_host = str(config.get("SMTP_HOST") or "").strip()

    requested = str(config.get("MAIL_TRANSPORT") or "").strip().lower()
    if not requested:
        if api_token:
            requested = "api"
        elif resend_key:
            requested = "resend"
        elif smtp_host:
            requested = "smtp"
        else:
            return None

    if requested == "api":
        if not api_token:
            raise ConfigurationError(
                "MAIL_TRANSPORT=api requires MAILTRAP_API_TOKEN (or MAIL_API_TOKEN)."
            )
        return HttpApiTransport(
            api_token,
            api_url=str(config.get("MAIL_API_URL") or DEFAULT_MAIL_API_URL),
            timeout=timeout,
        )
    if requested == "resend":
        if not resend_key:
            raise ConfigurationError("MAIL_TRANSPORT=resend requires RESEND_API_KEY.")
        return ResendTransport(resend_key, timeout=timeout)
    if requested == "smtp":
        username = str(config.get("SMTP_USERNAME") or "")
        password = str(config.get("SMTP_PASSWORD") or "")
        if not smtp_host or not username or not password:
            raise ConfigurationError(
                "SMTP delivery requires SMTP_HOST, SMTP_USERNAME and SMTP_PASSWORD."
            )
        return SmtpTransport(
            smtp_host,
            port=_parse_number(config.get("SMTP_PORT"), 587, int),
            username=username,
            password=password,
            use_tls=_parse_bool(config.get("SMTP_USE_TLS"), True),
            timeout=timeout,
        )

    raise ConfigurationError(
        f"Unknown MAIL_TRANSPORT '{requested}'. Use api, resend or smtp."
    )
