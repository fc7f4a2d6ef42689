"""
Email fallback for when the chat bot cannot be reached.
"""

import logging
import os
import smtplib
import ssl
from email.mime.image import MIMEImage
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

logger = logging.getLogger("board_monitor")


class MailService:
    """SMTP-over-SSL sender configured from MonitorConfig smtp_* fields."""

    def __init__(self, host: str, port: int, user: str, password: str, recipient: str, *, smtp_factory=smtplib.SMTP_SSL):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.recipient = recipient
        self._smtp_factory = smtp_factory

    @classmethod
    def from_config(cls, config) -> "MailService":
        return cls(
            config.smtp_host,
            config.smtp_port,
            config.smtp_user,
            config.smtp_password,
            config.smtp_recipient,
        )

    def is_configured(self) -> bool:
        return bool(self.host and self.user and self.recipient)

    def send_alert_mail(self, subject: str, text: str, link: str = "", image_path: str | None = None) -> bool:
        """Send one alert; True on success.  SMTP errors are logged, not raised."""
        if not self.is_configured():
            logger.debug("Mail fallback not configured — skipping")
            return False

        msg = MIMEMultipart()
        msg["Subject"] = subject
        msg["From"] = self.user
        msg["To"] = self.recipient

        link_html = f'<p><a href="{link}">Open</a></p>' if link else ""
        body = text.replace("\n", "<br>")
        msg.attach(MIMEText(f"<div><p>{body}</p>{link_html}</div>", "html", "utf-8"))

        if image_path and os.path.exists(image_path):
            with open(image_path, "rb") as f:
                image = MIMEImage(f.read())
            image.add_header("Content-Disposition", "attachment", filename=os.path.basename(image_path))
            msg.attach(image)

        try:
            context = ssl.create_default_context()
            with self._smtp_factory(self.host, self.port, context=context) as server:
                if self.password:
                    server.login(self.user, self.password)
                server.sendmail(self.user, [self.recipient], msg.as_string())
            logger.info(f"Fallback email sent to {self.recipient}")
            return True
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Fallback email failed: {e}")
            return False
