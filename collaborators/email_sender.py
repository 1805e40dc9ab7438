import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional, Dict, Any
import logging
import asyncio

from collaborators.base_collaborator import BaseCollaborator, ActionResult
from executor.template_renderer import TemplateRenderer, build_context
from models.actions import SendEmailConfig
from utils.rate_limiter import TokenBucketRateLimiter

logger = logging.getLogger("automation_engine")


class SMTPEmailSender(BaseCollaborator):
    def __init__(self, config: Dict[str, Any], renderer: TemplateRenderer = None):
        self.host = config.get("host")
        self.port = config.get("port", 587)
        self.username = config.get("username")
        self.password = config.get("password")
        self.use_tls = config.get("use_tls", True)
        self.default_from_email = config.get("from_email", "noreply@example.com")
        self.default_from_name = config.get("from_name")
        self.renderer = renderer or TemplateRenderer()
        self.rate_limiter = TokenBucketRateLimiter(config.get("rate_limit_per_minute", 60))

    async def execute(self, config: SendEmailConfig, snapshot: Dict[str, Any]) -> ActionResult:
        to_email = (snapshot.get("email") or "").strip()
        if not to_email:
            return ActionResult.failed(f"Contact {snapshot.get('id')} has no email address", permanent=True)

        context = build_context(snapshot)
        try:
            subject = self.renderer.render(config.subject, context)
            html_body = self.renderer.render(config.body_html, context)
            text_body = self.renderer.render(config.body_text, context) if config.body_text else None
        except ValueError as e:
            return ActionResult.failed(str(e), permanent=True)

        await self.rate_limiter.acquire()
        # Wrap synchronous SMTP in a thread to keep the event loop responsive
        return await asyncio.to_thread(
            self._send_sync,
            config.from_email or self.default_from_email,
            to_email,
            subject,
            html_body,
            text_body,
            config.from_name or self.default_from_name,
        )

    def _send_sync(
        self,
        from_email: str,
        to_email: str,
        subject: str,
        html_body: str,
        text_body: Optional[str] = None,
        from_name: Optional[str] = None,
    ) -> ActionResult:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject

        # A trailing space in an address can make the receiving server drop the message
        clean_from_email = from_email.strip()
        if from_name:
            msg["From"] = f"{from_name.strip()} <{clean_from_email}>"
        else:
            msg["From"] = clean_from_email
        msg["To"] = to_email

        if text_body:
            msg.attach(MIMEText(text_body, "plain"))
        if html_body:
            msg.attach(MIMEText(html_body, "html"))

        try:
            with smtplib.SMTP(self.host, self.port, timeout=30) as server:
                if self.use_tls:
                    server.starttls()
                if self.username:
                    server.login(self.username, self.password)
                server.sendmail(clean_from_email, [to_email], msg.as_string())
        except smtplib.SMTPRecipientsRefused as e:
            logger.error(f"SMTP recipient refused {to_email}: {e}")
            return ActionResult.failed(f"Recipient refused: {to_email}", permanent=True)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"SMTP send failed to {to_email}: {e}")
            return ActionResult.failed(f"SMTP send failed: {e}")

        logger.info(f"Email sent to {to_email}")
        return ActionResult.ok(to=to_email, subject=subject)
