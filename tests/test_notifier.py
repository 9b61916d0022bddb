import smtplib
from datetime import date

import pytest
import responses as resp_mock

from errors import DeliveryError
from notifier import SUBJECT, TOKEN_URL, format_offers, send_alert
from offers import Offer, park_url

PAGE = Offer("http://sperrychalet.com/vacancy_s.html")
PARK = Offer(park_url("111"), (date(2021, 7, 10), date(2021, 7, 17)))

PASSWORD_CREDS = {"user": "sender@gmail.com", "password": "apppass"}
OAUTH_CREDS = {
    "user": "sender@gmail.com",
    "client_id": "cid",
    "client_secret": "secret",
    "refresh_token": "refresh",
}


@pytest.fixture
def smtp(mocker):
    mock_smtp_cls = mocker.patch("notifier.smtplib.SMTP_SSL")
    server = mocker.MagicMock()
    mock_smtp_cls.return_value.__enter__ = mocker.MagicMock(return_value=server)
    mock_smtp_cls.return_value.__exit__ = mocker.MagicMock(return_value=False)
    return mock_smtp_cls, server


# ── Formatting ─────────────────────────────────────────────────────────────────

def test_format_lists_every_url_on_its_own_line():
    subject, body = format_offers([PAGE, PARK])
    lines = body.splitlines()
    assert subject == SUBJECT
    assert lines[1] == PAGE.source_url
    assert lines[2].startswith(PARK.source_url)


def test_format_appends_date_range_to_dated_offers():
    _, body = format_offers([PARK])
    assert "2021-07-10 to 2021-07-17" in body


def test_format_prefixes_park_name():
    named = Offer(PARK.source_url, PARK.date_range, name="Many Glacier")
    _, body = format_offers([named, PAGE])
    lines = body.splitlines()
    assert lines[1] == f"Many Glacier: {PARK.source_url} (2021-07-10 to 2021-07-17)"
    assert lines[2] == PAGE.source_url


# ── Delivery ───────────────────────────────────────────────────────────────────

def test_send_alert_with_password(smtp):
    mock_smtp_cls, server = smtp
    send_alert(PASSWORD_CREDS, ["a@x.com", "b@x.com"], [PAGE])

    mock_smtp_cls.assert_called_once_with("smtp.gmail.com", 465)
    server.login.assert_called_once_with("sender@gmail.com", "apppass")
    _, call_args, _ = server.sendmail.mock_calls[0]
    assert call_args[0] == "sender@gmail.com"
    assert call_args[1] == ["a@x.com", "b@x.com"]
    assert PAGE.source_url in call_args[2]


@resp_mock.activate
def test_send_alert_with_oauth_refresh_token(smtp):
    _, server = smtp
    resp_mock.add(resp_mock.POST, TOKEN_URL, json={"access_token": "tok"}, status=200)

    send_alert(OAUTH_CREDS, ["a@x.com"], [PARK])

    assert "grant_type=refresh_token" in resp_mock.calls[0].request.body
    server.login.assert_not_called()
    mechanism, authobject = server.auth.call_args[0]
    assert mechanism == "XOAUTH2"
    assert authobject() == "user=sender@gmail.com\1auth=Bearer tok\1\1"
    server.sendmail.assert_called_once()


def test_smtp_failure_raises_delivery_error(smtp, caplog):
    _, server = smtp
    server.login.side_effect = smtplib.SMTPAuthenticationError(535, b"bad credentials")

    with pytest.raises(DeliveryError):
        send_alert(PASSWORD_CREDS, ["a@x.com"], [PAGE])
    assert "Failed to send email to a@x.com" in caplog.text


@resp_mock.activate
def test_token_refresh_failure_raises_delivery_error(smtp):
    _, server = smtp
    resp_mock.add(resp_mock.POST, TOKEN_URL, status=400)

    with pytest.raises(DeliveryError):
        send_alert(OAUTH_CREDS, ["a@x.com"], [PAGE])
    server.sendmail.assert_not_called()


def test_send_alert_does_nothing_for_empty_offers(smtp):
    mock_smtp_cls, _ = smtp
    send_alert(PASSWORD_CREDS, ["a@x.com"], [])
    mock_smtp_cls.assert_not_called()
