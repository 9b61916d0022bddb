import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

import requests

from errors import DeliveryError

log = logging.getLogger(__name__)

SMTP_HOST = "smtp.gmail.com"
SMTP_PORT = 465
TOKEN_URL = "https://oauth2.googleapis.com/token"
SUBJECT = "Vacancies Available"


def format_offers(offers: list) -> tuple:
    """
    Returns (subject, body) for a list of vacant offers.
    Body is a header line followed by one offer URL per line, prefixed with the offer's
    name when it has one; dated offers carry their range.
    """
    lines = []
    for offer in offers:
        line = f"{offer.name}: {offer.source_url}" if offer.name else offer.source_url
        if offer.date_range:
            line += f" ({offer.start_date.isoformat()} to {offer.end_date.isoformat()})"
        lines.append(line)
    return SUBJECT, "Vacancies available for \n" + "\n".join(lines)


def refresh_access_token(client_id: str, client_secret: str, refresh_token: str) -> str:
    resp = requests.post(
        TOKEN_URL,
        data={
            "client_id": client_id,
            "client_secret": client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        },
        timeout=30,
    )
    resp.raise_for_status()
    return resp.json()["access_token"]


def send_email(creds: dict, to: list, subject: str, body: str):
    """
    Sends one message over SMTP_SSL, logging in with an app password when one is
    configured and with XOAUTH2 otherwise.

    Args:
        creds: {"user", "password"} or {"user", "client_id", "client_secret", "refresh_token"}
        to: recipient addresses
    """
    user = creds["user"]
    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = user
    msg["To"] = ", ".join(to)
    msg.attach(MIMEText(body, "plain"))

    token = None
    if not creds.get("password"):
        token = refresh_access_token(creds["client_id"], creds["client_secret"], creds["refresh_token"])

    with smtplib.SMTP_SSL(SMTP_HOST, SMTP_PORT) as server:
        if token:
            server.ehlo()
            server.auth(
                "XOAUTH2",
                lambda challenge=None: f"user={user}\1auth=Bearer {token}\1\1",
                initial_response_ok=True,
            )
        else:
            server.login(user, creds["password"])
        server.sendmail(user, to, msg.as_string())


def send_alert(creds: dict, recipients: list, offers: list):
    """
    Sends a single merged alert for all vacant offers.
    Raises DeliveryError when the transport fails; returning means the mail went out.
    """
    if not offers or not recipients:
        return
    subject, body = format_offers(offers)
    urls = "\n".join(o.source_url for o in offers)
    try:
        send_email(creds, recipients, subject, body)
    except (smtplib.SMTPException, OSError, requests.RequestException, KeyError) as e:
        log.error("Failed to send email to %s: %s", ", ".join(recipients), e)
        raise DeliveryError(f"Failed to send email to {', '.join(recipients)}: {e}") from e
    log.info("Successfully sent email to %s for url(s):\n%s", ", ".join(recipients), urls)
