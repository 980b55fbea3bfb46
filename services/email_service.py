import json
import logging
import smtplib
import ssl
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formatdate, make_msgid
from typing import Iterable, List, Optional, Tuple, Union

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from config.settings import settings as default_settings
from services.errors import MailTransportError

logger = logging.getLogger(__name__)


@dataclass
class EmailSendResult:
    """Outcome of a single SMTP send attempt."""

    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


class EmailService:
    """Sends HTML emails with a plain-text alternative over SMTP."""

    def __init__(self, settings=None):
        self.settings = settings or default_settings
        self.timeout = self._coerce_timeout(
            getattr(self.settings, "smtp_timeout_seconds", 30)
        )

    def send_email(
        self,
        subject: str,
        html_body: str,
        recipients: Union[str, Iterable[str]],
        *,
        text_body: Optional[str] = None,
        sender: Optional[str] = None,
        message_id: Optional[str] = None,
    ) -> EmailSendResult:
        """Send an email; transport failures are reported on the result."""

        sender = sender or self.settings.app_email
        if isinstance(recipients, str):
            recipient_list = [recipients]
        else:
            recipient_list = list(recipients)

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = sender
        msg["To"] = ", ".join(recipient_list)
        generated_message_id = message_id or make_msgid(domain=self._infer_domain(sender))
        msg["Message-ID"] = generated_message_id
        msg["Date"] = formatdate(localtime=True)
        if text_body:
            msg.attach(MIMEText(text_body, "plain", "utf-8"))
        msg.attach(MIMEText(html_body, "html", "utf-8"))

        try:
            username, password = self._resolve_credentials()
            self._deliver_via_smtp(msg.as_string(), sender, recipient_list, username, password)
        except (MailTransportError, smtplib.SMTPException, OSError) as exc:
            logger.warning("Email send to %s failed: %s", recipient_list, exc)
            return EmailSendResult(False, generated_message_id, str(exc) or exc.__class__.__name__)

        logger.info("Sent email %s to %s", generated_message_id, recipient_list)
        return EmailSendResult(True, generated_message_id)

    def _resolve_credentials(self) -> Tuple[Optional[str], Optional[str]]:
        if getattr(self.settings, "smtp_secret_name", None):
            return self._fetch_smtp_credentials()
        return self.settings.smtp_user, self.settings.smtp_password

    def _fetch_smtp_credentials(self) -> Tuple[str, str]:
        """Retrieve SMTP credentials from AWS Secrets Manager."""

        secret_name = self.settings.smtp_secret_name
        region = getattr(self.settings, "smtp_secret_region", None) or "eu-west-1"
        client = boto3.client("secretsmanager", region_name=region)
        try:
            secret_value = client.get_secret_value(SecretId=secret_name)
        except (ClientError, BotoCoreError) as exc:
            raise MailTransportError(
                f"Failed to retrieve SMTP secret '{secret_name}'"
            ) from exc

        secret_string = secret_value.get("SecretString")
        if not secret_string:
            raise MailTransportError("Secret does not contain a SecretString payload")
        try:
            payload = json.loads(secret_string)
        except json.JSONDecodeError as exc:
            raise MailTransportError("Secret payload is not valid JSON") from exc

        username = payload.get("SMTP_USERNAME") or payload.get("smtp_username") or payload.get("username")
        password = payload.get("SMTP_PASSWORD") or payload.get("smtp_password") or payload.get("password")
        if not username or not password:
            raise MailTransportError("Secret payload missing SMTP credentials")
        return str(username).strip(), str(password).strip()

    def _deliver_via_smtp(
        self,
        message_payload: str,
        sender: str,
        recipient_list: List[str],
        smtp_username: Optional[str],
        smtp_password: Optional[str],
    ) -> None:
        host = getattr(self.settings, "smtp_host", None)
        if not host:
            raise MailTransportError("SMTP host is not configured")
        use_ssl = bool(getattr(self.settings, "smtp_use_ssl", False))

        with self._open_connection(host, self.settings.smtp_port, use_ssl) as server:
            server.ehlo()
            if getattr(self.settings, "smtp_use_tls", True) and not use_ssl:
                server.starttls(context=ssl.create_default_context())
                server.ehlo()
            if smtp_username and smtp_password:
                server.login(smtp_username, smtp_password)
            server.sendmail(sender, recipient_list, message_payload)

    def _open_connection(self, host: str, port: int, use_ssl: bool) -> smtplib.SMTP:
        if use_ssl:
            return smtplib.SMTP_SSL(
                host, port, timeout=self.timeout, context=ssl.create_default_context()
            )
        return smtplib.SMTP(host, port, timeout=self.timeout)

    @staticmethod
    def _coerce_timeout(value) -> float:
        try:
            coerced = float(value)
        except (TypeError, ValueError):
            return 30.0
        return coerced if coerced > 0 else 30.0

    @staticmethod
    def _infer_domain(sender: str) -> Optional[str]:
        """Best-effort extraction of the sender's domain for Message-ID generation."""

        if not sender or "@" not in sender:
            return None
        domain = sender.split("@", 1)[-1].strip().rstrip(">")
        return domain or None
