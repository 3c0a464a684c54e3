from __future__ import annotations

import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import formatdate, make_msgid
from pathlib import Path
from typing import Protocol
from uuid import uuid4

from jinja2 import Environment, FileSystemLoader, select_autoescape

from printflow.logging_config import get_logger

logger = get_logger('services.email')

EMAIL_TEMPLATE_DIR = Path(__file__).resolve().parent.parent / 'templates' / 'emails'

_templates = Environment(
    loader=FileSystemLoader(str(EMAIL_TEMPLATE_DIR)),
    autoescape=select_autoescape(['html']),
)

# (filename, content, mimetype)
Attachment = tuple[str, bytes, str]


@dataclass(frozen=True)
class SentEmail:
    message_id: str


class EmailDispatcher(Protocol):
    def send(
        self,
        *,
        to: list[str],
        subject: str,
        html: str,
        attachments: list[Attachment] | None = None,
    ) -> SentEmail: ...


def render_email(template_name: str, **context) -> str:
    return _templates.get_template(template_name).render(**context)


class LoggingEmailDispatcher:
    """Records the send in the log instead of talking to a mail server."""

    def send(self, *, to, subject, html, attachments=None) -> SentEmail:
        message_id = f'log-{uuid4().hex}'
        logger.info(
            'email_logged',
            extra={
                'to': to,
                'subject': subject,
                'message_id': message_id,
                'attachment_count': len(attachments or []),
            },
        )
        return SentEmail(message_id=message_id)


def build_message(
    *,
    from_email: str,
    to_emails: list[str],
    subject: str,
    body_html: str,
    attachments: list[Attachment] | None = None,
) -> EmailMessage:
    msg = EmailMessage()
    msg['From'] = from_email
    msg['To'] = ', '.join(to_emails)
    msg['Subject'] = subject
    msg['Date'] = formatdate(localtime=True)
    msg['Message-ID'] = make_msgid()
    msg.set_content('This message requires an HTML capable mail client.')
    msg.add_alternative(body_html, subtype='html')

    for filename, content, mimetype in attachments or []:
        maintype, subtype = (mimetype.split('/', 1) + ['octet-stream'])[:2]
        msg.add_attachment(content, maintype=maintype, subtype=subtype, filename=filename)
    return msg


class SmtpEmailDispatcher:
    def __init__(
        self,
        *,
        host: str,
        port: int,
        use_tls: bool,
        from_email: str,
        username: str | None = None,
        password: str | None = None,
        timeout: int = 30,
    ) -> None:
        self.host = host
        self.port = port
        self.use_tls = use_tls
        self.from_email = from_email
        self.username = username
        self.password = password
        self.timeout = timeout

    def send(self, *, to, subject, html, attachments=None) -> SentEmail:
        msg = build_message(
            from_email=self.from_email,
            to_emails=list(to),
            subject=subject,
            body_html=html,
            attachments=attachments,
        )
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            smtp.ehlo()
            if self.use_tls:
                smtp.starttls()
                smtp.ehlo()
            if self.username:
                smtp.login(self.username, self.password or '')
            smtp.send_message(msg, from_addr=self.from_email, to_addrs=list(to))
        return SentEmail(message_id=msg['Message-ID'])


def build_email_dispatcher(config) -> EmailDispatcher:
    backend = (config.email_backend or 'log').strip().lower()
    if backend == 'log':
        return LoggingEmailDispatcher()
    if backend == 'smtp':
        return SmtpEmailDispatcher(
            host=config.smtp_host,
            port=config.smtp_port,
            use_tls=config.smtp_use_tls,
            from_email=config.email_from,
            username=config.smtp_username,
            password=config.smtp_password,
        )
    raise ValueError(f'Unsupported email backend: {config.email_backend}')
