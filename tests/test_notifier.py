"""Notifier 测试：Telegram / 邮件分发与实例级路由。"""
import httpx
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from fleetwatch.models import Host
from fleetwatch.services.notifier import (
    Notifier,
    calm_summary_message,
    dead_message,
    escalation_message,
    resurrection_message,
)


def _mock_http(mock_client_cls, side_effect=None):
    mock_http = AsyncMock()
    resp = MagicMock()
    resp.raise_for_status = MagicMock()
    if side_effect is not None:
        mock_http.post.side_effect = side_effect
    else:
        mock_http.post.return_value = resp
    mock_http.__aenter__ = AsyncMock(return_value=mock_http)
    mock_http.__aexit__ = AsyncMock(return_value=False)
    mock_client_cls.return_value = mock_http
    return mock_http


def test_messages():
    text = escalation_message("alpha", "disk", ["cleanup", "vacuum", "cleanup"])
    assert "alpha" in text and "disk" in text
    assert "  3. cleanup" in text
    assert "2 issue(s)" in calm_summary_message("alpha", 2, ["disk", "memory"])
    assert resurrection_message("alpha", 4, "service restart").startswith("Death #4 - Resurrected")
    assert "DEAD" in dead_message("alpha", 3)


@pytest.mark.asyncio
async def test_send_message_posts_to_bot_api():
    notifier = Notifier(telegram_token="123:abc", telegram_chat_id="42", email="", api_base="http://tg.test")
    with patch("httpx.AsyncClient") as mock_client_cls:
        mock_http = _mock_http(mock_client_cls)
        assert await notifier.send_message("42", "hello") is True

    args, kwargs = mock_http.post.call_args
    assert args[0] == "http://tg.test/bot123:abc/sendMessage"
    assert kwargs["json"] == {"chat_id": "42", "text": "hello"}


@pytest.mark.asyncio
async def test_send_message_failure_returns_false():
    notifier = Notifier(telegram_token="123:abc", telegram_chat_id="42", email="", api_base="http://tg.test")
    with patch("httpx.AsyncClient") as mock_client_cls:
        _mock_http(mock_client_cls, side_effect=httpx.ConnectError("refused"))
        assert await notifier.send_message("42", "hello") is False


@pytest.mark.asyncio
async def test_notify_fans_out_to_every_channel():
    notifier = Notifier(telegram_token="t", telegram_chat_id="42", email="ops@example.com", api_base="http://tg.test")
    notifier.send_message = AsyncMock(return_value=True)
    notifier.send_email = AsyncMock(return_value=True)

    delivered = await notifier.notify("disk full", subject="alert")

    assert delivered == ["telegram", "email"]
    notifier.send_email.assert_awaited_once_with("ops@example.com", "alert", "disk full")


@pytest.mark.asyncio
async def test_notify_host_routing_overrides_global():
    notifier = Notifier(telegram_token="global", telegram_chat_id="1", email="", api_base="http://tg.test")
    notifier.send_message = AsyncMock(return_value=True)
    notifier.send_email = AsyncMock(return_value=False)
    host = Host(name="alpha", ip="10.0.0.5", parent_telegram_token="parent", parent_chat_id="99",
                parent_email="owner@example.com")

    delivered = await notifier.notify("text", host=host)

    assert delivered == ["telegram"]
    notifier.send_message.assert_awaited_once_with("99", "text", token="parent")
    notifier.send_email.assert_awaited_once()


@pytest.mark.asyncio
async def test_notify_nothing_configured():
    notifier = Notifier(telegram_token="", telegram_chat_id="", email="", api_base="http://tg.test")
    assert await notifier.notify("text") == []


@pytest.mark.asyncio
async def test_send_email_uses_settings():
    notifier = Notifier(telegram_token="", telegram_chat_id="", email="ops@example.com", api_base="http://tg.test")
    with patch("fleetwatch.services.notifier.settings") as mock_settings, \
            patch("fleetwatch.services.notifier.aiosmtplib.send", new_callable=AsyncMock) as mock_send:
        mock_settings.smtp_host = "smtp.example.com"
        mock_settings.smtp_port = 465
        mock_settings.smtp_user = "bot@example.com"
        mock_settings.smtp_password = "secret"
        mock_settings.smtp_ssl = True
        assert await notifier.send_email("ops@example.com", "subject", "body") is True

    kwargs = mock_send.call_args.kwargs
    assert kwargs["hostname"] == "smtp.example.com"
    assert kwargs["use_tls"] is True
