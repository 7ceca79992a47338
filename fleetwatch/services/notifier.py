"""
通知分发服务模块。

把修复结果、升级告警和看门狗事件发送给人工运维：
Telegram Bot API（sendMessage）和 SMTP 邮件。实例元数据中的 parent
Telegram / 邮箱配置优先于全局配置。单个渠道发送失败只记录日志，
不影响其他渠道。
"""
import logging
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

import aiosmtplib
import httpx

from fleetwatch.core.config import settings
from fleetwatch.models import Host

logger = logging.getLogger(__name__)

DEFAULT_SUBJECT = "fleetwatch notification"


# ---------------------------------------------------------------------------
# 通知正文
# ---------------------------------------------------------------------------

def escalation_message(instance: str, check: str, methods: list[str]) -> str:
    """修复失败升级时的告警正文（最多三次尝试）。"""
    tried = "\n".join(f"  {i}. {m}" for i, m in enumerate(methods, 1)) or "  (none)"
    return (
        f"ALERT: Instance {instance} has an issue that could not be auto-fixed "
        f"after {len(methods)} attempt(s).\n\n"
        f"Check: {check}\n\n"
        f"Approaches tried:\n{tried}\n\n"
        f"Please investigate manually: fleetwatch diagnose {instance}"
    )


def calm_summary_message(instance: str, fixed: int, checks: list[str]) -> str:
    """全部修复成功时的简要说明。"""
    return (
        f"Instance {instance} had {fixed} issue(s) that were fixed automatically: "
        f"{', '.join(checks)}. No action needed."
    )


def resurrection_message(host_label: str, deaths: int, stage: str) -> str:
    return f"Death #{deaths} - Resurrected. {host_label} was restored by the watchdog ({stage})."


def dead_message(host_label: str, failures: int) -> str:
    return (
        f"CRITICAL: {host_label} is DEAD. Restart and backup restore both failed "
        f"after {failures} consecutive failed checks. Manual intervention required."
    )


# ---------------------------------------------------------------------------
# 发送
# ---------------------------------------------------------------------------

class Notifier:
    """通知渠道集合，默认值取自全局配置。"""

    def __init__(
        self,
        telegram_token: Optional[str] = None,
        telegram_chat_id: Optional[str] = None,
        email: Optional[str] = None,
        api_base: Optional[str] = None,
    ) -> None:
        self.telegram_token = settings.telegram_bot_token if telegram_token is None else telegram_token
        self.telegram_chat_id = settings.telegram_chat_id if telegram_chat_id is None else telegram_chat_id
        self.email = settings.alert_email if email is None else email
        self.api_base = (api_base or settings.telegram_api_base).rstrip("/")

    async def send_message(self, chat_id: str, text: str, token: Optional[str] = None) -> bool:
        """通过 Telegram Bot API 发送文本消息。"""
        token = token or self.telegram_token
        if not token or not chat_id:
            return False
        url = f"{self.api_base}/bot{token}/sendMessage"
        try:
            async with httpx.AsyncClient(timeout=10) as client:
                resp = await client.post(url, json={"chat_id": chat_id, "text": text})
                resp.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("Telegram notification to chat %s failed: %s", chat_id, e)
            return False
        return True

    async def send_email(self, address: str, subject: str, body: str) -> bool:
        """通过 SMTP 发送纯文本邮件。"""
        if not address or not settings.smtp_host:
            return False
        msg = MIMEMultipart("alternative")
        msg["From"] = settings.smtp_user or "fleetwatch@localhost"
        msg["To"] = address
        msg["Subject"] = subject
        msg.attach(MIMEText(body, "plain", "utf-8"))

        kwargs = {
            "hostname": settings.smtp_host,
            "port": settings.smtp_port,
            "username": settings.smtp_user or None,
            "password": settings.smtp_password or None,
        }
        if settings.smtp_ssl:
            kwargs["use_tls"] = True
        else:
            kwargs["start_tls"] = True
        try:
            await aiosmtplib.send(msg, **kwargs)
        except (aiosmtplib.SMTPException, OSError) as e:
            logger.error("Email notification to %s failed: %s", address, e)
            return False
        return True

    async def notify(self, text: str, subject: Optional[str] = None, host: Optional[Host] = None) -> list[str]:
        """
        向所有已配置渠道分发 (Fan out to every configured channel)

        Args:
            text: 通知正文
            subject: 邮件主题，默认 DEFAULT_SUBJECT
            host: 实例；其 parent_* 元数据覆盖全局渠道配置

        Returns:
            list[str]: 成功接收消息的渠道名（"telegram" / "email"）
        """
        token = (host.parent_telegram_token if host else None) or self.telegram_token
        chat_id = (host.parent_chat_id if host else None) or self.telegram_chat_id
        email = (host.parent_email if host else None) or self.email

        delivered: list[str] = []
        if token and chat_id and await self.send_message(chat_id, text, token=token):
            delivered.append("telegram")
        if email and await self.send_email(email, subject or DEFAULT_SUBJECT, text):
            delivered.append("email")

        if not delivered:
            logger.warning("Notification not delivered to any channel: %s", text.splitlines()[0] if text else "")
        return delivered


notifier = Notifier()
