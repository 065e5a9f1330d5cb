import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from pathlib import Path
from typing import Any, Dict, Optional

import resend
from jinja2 import Environment, FileSystemLoader, select_autoescape
from tenacity import retry, stop_after_attempt, wait_exponential

from manuscripta.core.config import ResendConfig, SMTPConfig
from manuscripta.models.email_log import EmailStatus

logger = logging.getLogger("manuscripta.mail")


class EmailService:
    """
    邮件发送（SMTP 优先，Resend 兜底）+ 发送日志。

    中文注释:
    - 发送失败只返回 False 并记录日志，绝不向上抛异常阻断业务流转。
    - 是否重试由调用方决定（Resend 路径内置有限次指数退避）。
    """

    _SENTINEL = object()

    def __init__(
        self,
        *,
        smtp_config: SMTPConfig | None | object = _SENTINEL,
        resend_config: ResendConfig | None | object = _SENTINEL,
        log_client: Any = None,
    ):
        # 中文注释:
        # - smtp_config / resend_config 支持依赖注入，方便单测与不同环境切换。
        # - 若调用方显式传 None，则视为禁用该 provider。
        if smtp_config is self._SENTINEL:
            smtp_config = SMTPConfig.from_env()
        if resend_config is self._SENTINEL:
            resend_config = ResendConfig.from_env()

        self.smtp_config: SMTPConfig | None = smtp_config  # type: ignore[assignment]
        self.resend_config: ResendConfig | None = resend_config  # type: ignore[assignment]

        if self.resend_config:
            resend.api_key = self.resend_config.api_key

        templates_dir = Path(__file__).resolve().parent / "templates"
        self._jinja = Environment(
            loader=FileSystemLoader(str(templates_dir)),
            autoescape=select_autoescape(["html", "xml"]),
        )

        # email_logs 写入用的 client（缺省不写日志表，单测/CI 不必强依赖 Supabase）
        self._log_client = log_client

    def is_configured(self) -> bool:
        return bool(self.smtp_config or self.resend_config)

    def render_template(self, template_name: str, context: Dict[str, Any]) -> str:
        return self._jinja.get_template(template_name).render(**context)

    def send_email(
        self,
        *,
        to_email: str,
        subject: str,
        html_body: str,
        text_body: str | None = None,
    ) -> bool:
        """
        发送邮件（同步）。
        """
        if self.smtp_config:
            try:
                msg = MIMEMultipart("alternative")
                msg["Subject"] = subject
                msg["From"] = self.smtp_config.from_email
                msg["To"] = to_email

                if text_body:
                    msg.attach(MIMEText(text_body, "plain", "utf-8"))
                msg.attach(MIMEText(html_body, "html", "utf-8"))

                with smtplib.SMTP(self.smtp_config.host, self.smtp_config.port) as server:
                    if self.smtp_config.use_starttls:
                        server.starttls()
                    if self.smtp_config.user and self.smtp_config.password:
                        server.login(self.smtp_config.user, self.smtp_config.password)
                    server.sendmail(self.smtp_config.from_email, [to_email], msg.as_string())
                return True
            except Exception as e:
                logger.warning("[SMTP] send failed: %s", e)
                return False

        if self.resend_config:
            try:
                self._send_with_retry(to_email, subject, html_body, text_body)
                return True
            except Exception as e:
                logger.warning("[Resend] send failed: %s", e)
                return False

        return False

    def send_template_email(
        self,
        *,
        to_email: str,
        subject: str,
        template_name: str,
        context: Dict[str, Any],
        text_body: str | None = None,
    ) -> bool:
        if not to_email:
            return False
        if not self.is_configured():
            self._log_attempt(to_email, subject, template_name, EmailStatus.SKIPPED, error_message="email not configured")
            return False
        try:
            html = self.render_template(template_name, context)
        except Exception as e:
            logger.warning("[Email] template render failed: %s", e)
            self._log_attempt(to_email, subject, template_name, EmailStatus.FAILED, error_message="render failed")
            return False

        ok = self.send_email(to_email=to_email, subject=subject, html_body=html, text_body=text_body)
        self._log_attempt(
            to_email,
            subject,
            template_name,
            EmailStatus.SENT if ok else EmailStatus.FAILED,
            error_message=None if ok else "send failed",
        )
        return ok

    @retry(stop=stop_after_attempt(3), wait=wait_exponential(multiplier=1, min=2, max=10), reraise=True)
    def _send_with_retry(self, to_email: str, subject: str, html_content: str, text_content: str | None = None):
        params: Dict[str, Any] = {
            "from": self.resend_config.sender if self.resend_config else "Manuscripta <no-reply@manuscripta.local>",
            "to": [to_email],
            "subject": subject,
            "html": html_content,
        }
        if text_content:
            params["text"] = text_content
        return resend.Emails.send(params)

    def _log_attempt(
        self,
        recipient: str,
        subject: str,
        template_name: str,
        status: EmailStatus,
        error_message: Optional[str] = None,
    ) -> None:
        if self._log_client is None:
            return
        try:
            self._log_client.table("email_logs").insert(
                {
                    "recipient": recipient,
                    "subject": subject,
                    "template_name": template_name,
                    "status": status.value,
                    "error_message": error_message,
                }
            ).execute()
        except Exception as e:
            logger.warning("[Email] log attempt failed (ignored): %s", e)
