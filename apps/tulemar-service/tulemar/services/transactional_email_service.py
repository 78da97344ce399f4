"""
Transactional Email Service

Delivers order emails (confirmations, status changes, staff assignments)
through a configured provider and renders them from Jinja2 templates.

Supports:
- Resend
- SendGrid
- Mailgun (HTTP API via requests)
- SMTP (aiosmtplib)
- console (logs the message; default when nothing is configured)

Every provider returns the same result shape:
``{'success', 'provider', 'message_id', 'error'}``.
"""

import os
import re
import logging
from typing import Optional, Dict, Any, List
from enum import Enum
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import make_msgid
from pathlib import Path

import aiosmtplib
from jinja2 import Environment, FileSystemLoader, TemplateNotFound, select_autoescape

logger = logging.getLogger(__name__)

_DEFAULT_TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "templates" / "email"


class EmailProvider(Enum):
    """Supported email service providers."""
    RESEND = "resend"
    SENDGRID = "sendgrid"
    MAILGUN = "mailgun"
    SMTP = "smtp"
    CONSOLE = "console"


class TransactionalEmailConfig:
    """Configuration for transactional email services."""

    def __init__(self):
        self.provider = EmailProvider(os.getenv('EMAIL_PROVIDER', 'console').strip().lower())

        self.from_email = os.getenv('FROM_EMAIL', 'orders@tulemar.shop')
        self.from_name = os.getenv('FROM_NAME', 'Tulemar Shop')
        self.reply_to_email = os.getenv('REPLY_TO_EMAIL', '')

        self.resend_api_key = os.getenv('RESEND_API_KEY', '')
        self.sendgrid_api_key = os.getenv('SENDGRID_API_KEY', '')
        self.mailgun_api_key = os.getenv('MAILGUN_API_KEY', '')
        self.mailgun_domain = os.getenv('MAILGUN_DOMAIN', '')

        self.smtp_host = os.getenv('SMTP_HOST', '')
        self.smtp_port = int(os.getenv('SMTP_PORT', '587'))
        self.smtp_username = os.getenv('SMTP_USERNAME', '')
        self.smtp_password = os.getenv('SMTP_PASSWORD', '')
        self.smtp_use_tls = os.getenv('SMTP_USE_TLS', 'true').lower() == 'true'

        self.template_dir = os.getenv('EMAIL_TEMPLATE_DIR', str(_DEFAULT_TEMPLATE_DIR))

    def is_configured(self) -> bool:
        """Check if the selected provider is properly configured."""
        return not self.validate()

    def validate(self) -> List[str]:
        """Validate configuration and return list of errors."""
        errors = []

        if not self.from_email:
            errors.append("FROM_EMAIL is required")

        if self.provider == EmailProvider.RESEND:
            if not self.resend_api_key:
                errors.append("RESEND_API_KEY is required for Resend provider")
        elif self.provider == EmailProvider.SENDGRID:
            if not self.sendgrid_api_key:
                errors.append("SENDGRID_API_KEY is required for SendGrid provider")
        elif self.provider == EmailProvider.MAILGUN:
            if not self.mailgun_api_key:
                errors.append("MAILGUN_API_KEY is required for Mailgun provider")
            if not self.mailgun_domain:
                errors.append("MAILGUN_DOMAIN is required for Mailgun provider")
        elif self.provider == EmailProvider.SMTP:
            if not self.smtp_host:
                errors.append("SMTP_HOST is required for SMTP provider")
            if self.smtp_port <= 0:
                errors.append("SMTP_PORT must be a positive integer")

        return errors

    @property
    def sender(self) -> str:
        return f"{self.from_name} <{self.from_email}>"


class ResendEmailService:
    """Email service implementation for Resend."""

    def __init__(self, config: TransactionalEmailConfig):
        import resend

        resend.api_key = config.resend_api_key
        self.config = config
        self.client = resend

    async def send_email(self, to_email: str, subject: str, html_content: str, text_content: Optional[str] = None) -> Dict[str, Any]:
        try:
            email_data = {
                "from": self.config.sender,
                "to": [to_email],
                "subject": subject,
                "html": html_content,
            }
            if text_content:
                email_data["text"] = text_content
            if self.config.reply_to_email:
                email_data["reply_to"] = self.config.reply_to_email

            result = self.client.Emails.send(email_data)
            return {'success': True, 'provider': 'resend', 'message_id': result['id']}
        except Exception as e:
            return {'success': False, 'provider': 'resend', 'error': str(e)}


class SendGridEmailService:
    """Email service implementation for SendGrid."""

    def __init__(self, config: TransactionalEmailConfig):
        from sendgrid import SendGridAPIClient

        self.config = config
        self.client = SendGridAPIClient(api_key=config.sendgrid_api_key)

    async def send_email(self, to_email: str, subject: str, html_content: str, text_content: Optional[str] = None) -> Dict[str, Any]:
        try:
            from sendgrid.helpers.mail import Mail, From, To, PlainTextContent

            mail = Mail(
                from_email=From(self.config.from_email, self.config.from_name),
                to_emails=To(to_email),
                subject=subject,
                html_content=html_content,
            )
            if text_content:
                mail.plain_text_content = PlainTextContent(text_content)
            if self.config.reply_to_email:
                mail.reply_to = self.config.reply_to_email

            response = self.client.send(mail)
            return {
                'success': 200 <= response.status_code < 300,
                'provider': 'sendgrid',
                'message_id': response.headers.get('X-Message-Id', ''),
                'status_code': response.status_code,
            }
        except Exception as e:
            return {'success': False, 'provider': 'sendgrid', 'error': str(e)}


class MailgunEmailService:
    """Email service implementation for Mailgun."""

    def __init__(self, config: TransactionalEmailConfig):
        import requests

        self.config = config
        self.requests = requests
        self.base_url = f"https://api.mailgun.net/v3/{config.mailgun_domain}"

    async def send_email(self, to_email: str, subject: str, html_content: str, text_content: Optional[str] = None) -> Dict[str, Any]:
        try:
            data = {
                "from": self.config.sender,
                "to": to_email,
                "subject": subject,
                "html": html_content,
            }
            if text_content:
                data["text"] = text_content
            if self.config.reply_to_email:
                data["h:Reply-To"] = self.config.reply_to_email

            response = self.requests.post(
                f"{self.base_url}/messages",
                auth=("api", self.config.mailgun_api_key),
                data=data,
                timeout=15,
            )
            if response.status_code == 200:
                result = response.json()
                return {'success': True, 'provider': 'mailgun', 'message_id': result.get('id', '')}
            return {
                'success': False,
                'provider': 'mailgun',
                'error': f"HTTP {response.status_code}: {response.text}",
            }
        except Exception as e:
            return {'success': False, 'provider': 'mailgun', 'error': str(e)}


class SmtpEmailService:
    """Email service implementation for a plain SMTP relay."""

    def __init__(self, config: TransactionalEmailConfig):
        self.config = config

    async def send_email(self, to_email: str, subject: str, html_content: str, text_content: Optional[str] = None) -> Dict[str, Any]:
        message = MIMEMultipart('alternative')
        message['From'] = self.config.sender
        message['To'] = to_email
        message['Subject'] = subject
        message['Message-ID'] = make_msgid(domain=self.config.from_email.split('@')[-1])
        if self.config.reply_to_email:
            message['Reply-To'] = self.config.reply_to_email
        if text_content:
            message.attach(MIMEText(text_content, 'plain', 'utf-8'))
        message.attach(MIMEText(html_content, 'html', 'utf-8'))

        try:
            async with aiosmtplib.SMTP(
                hostname=self.config.smtp_host,
                port=self.config.smtp_port,
                start_tls=self.config.smtp_use_tls,
            ) as smtp:
                if self.config.smtp_username and self.config.smtp_password:
                    await smtp.login(self.config.smtp_username, self.config.smtp_password)
                await smtp.send_message(message)
            return {'success': True, 'provider': 'smtp', 'message_id': message['Message-ID']}
        except Exception as e:
            return {'success': False, 'provider': 'smtp', 'error': f"SMTP sending failed: {e}"}


class ConsoleEmailService:
    """Logs outgoing mail instead of sending it (local development)."""

    def __init__(self, config: TransactionalEmailConfig):
        self.config = config

    async def send_email(self, to_email: str, subject: str, html_content: str, text_content: Optional[str] = None) -> Dict[str, Any]:
        logger.info("console_email to=%s subject=%s\n%s", to_email, subject, text_content or html_content)
        return {'success': True, 'provider': 'console', 'message_id': make_msgid(domain='console.local')}


_PROVIDER_CLASSES = {
    EmailProvider.RESEND: ResendEmailService,
    EmailProvider.SENDGRID: SendGridEmailService,
    EmailProvider.MAILGUN: MailgunEmailService,
    EmailProvider.SMTP: SmtpEmailService,
    EmailProvider.CONSOLE: ConsoleEmailService,
}


class TransactionalEmailService:
    """Main transactional email service that delegates to provider implementations."""

    def __init__(self, config: Optional[TransactionalEmailConfig] = None):
        self.config = config or TransactionalEmailConfig()
        self.provider_service = None
        self.template_env = Environment(
            loader=FileSystemLoader(self.config.template_dir),
            autoescape=select_autoescape(['html']),
        )
        self._setup_provider()

    def _setup_provider(self):
        errors = self.config.validate()
        if errors:
            logger.warning("Email service not configured: %s", "; ".join(errors))
            return
        self.provider_service = _PROVIDER_CLASSES[self.config.provider](self.config)
        logger.info("Initialized %s email service", self.config.provider.value)

    async def send_email(
        self,
        to_email: str,
        subject: str,
        html_content: str,
        text_content: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Send an email via the configured provider.

        Returns:
            Dict with 'success', 'provider', 'message_id', and 'error' keys
        """
        if not self.provider_service:
            return {
                'success': False,
                'provider': self.config.provider.value,
                'error': 'Email service not configured or initialization failed',
            }

        logger.info("Sending email to %s via %s", to_email, self.config.provider.value)
        result = await self.provider_service.send_email(
            to_email=to_email,
            subject=subject,
            html_content=html_content,
            text_content=text_content,
        )
        if result['success']:
            logger.info("Email sent to %s via %s", to_email, result['provider'])
        else:
            logger.error("Email sending failed: %s", result.get('error'))
        return result

    def render_template(self, template_name: str, context: Dict[str, Any]) -> tuple[str, str]:
        """
        Render email template with context.

        Returns:
            Tuple of (html_content, text_content); text falls back to the
            stripped HTML when no ``.txt`` template exists.
        """
        html_content = self.template_env.get_template(f"{template_name}.html").render(**context)
        try:
            text_content = self.template_env.get_template(f"{template_name}.txt").render(**context)
        except TemplateNotFound:
            text_content = self._html_to_text(html_content)
        return html_content, text_content

    def _html_to_text(self, html_content: str) -> str:
        text = re.sub(r'<[^>]+>', '', html_content)
        text = text.replace('&amp;', '&').replace('&lt;', '<').replace('&gt;', '>')
        text = text.replace('&quot;', '"').replace('&#39;', "'")
        return re.sub(r'\s+', ' ', text).strip()


_email_service = None


def get_transactional_email_service() -> TransactionalEmailService:
    """Get singleton transactional email service instance."""
    global _email_service
    if _email_service is None:
        _email_service = TransactionalEmailService()
    return _email_service
