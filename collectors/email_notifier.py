"""Resend email delivery for triggered price alerts."""

import logging
from datetime import datetime, timezone
from html import escape
from zoneinfo import ZoneInfo

import requests

from config.settings import get_settings
from utils.helpers import pct_change

logger = logging.getLogger("portfolio_tracker.collectors.email")

MARKET_TZ = ZoneInfo("America/New_York")


def alert_labels(alert_type: str, target_value: float) -> tuple[str, str]:
    """Human labels for an alert: ("PRICE ABOVE", "$150.00") or ("PCT CHANGE UP", "10%")."""
    type_label = alert_type.replace("_", " ")
    if alert_type.startswith("PCT"):
        target_label = f"{target_value:g}%"
    else:
        target_label = f"${target_value:.2f}"
    return type_label, target_label


def compose_alert_email(alert: dict, current_price: float, entry: dict | None,
                        triggered_at: datetime) -> tuple[str, str]:
    """Build (subject, html) for a triggered alert."""
    type_label, target_label = alert_labels(alert["alert_type"], alert["target_value"])
    symbol = alert["symbol"]
    subject = f"Price Alert: {symbol} {type_label} {target_label}"

    company = (entry or {}).get("company_name")
    title = f"{escape(symbol)} - {escape(company)}" if company else escape(symbol)

    change_html = ""
    change = pct_change(current_price, (entry or {}).get("price_when_added"))
    if change is not None:
        change_html = f'<p style="margin: 4px 0;">Change since added: {change:+.2f}%</p>'

    if triggered_at.tzinfo is None:
        triggered_at = triggered_at.replace(tzinfo=timezone.utc)
    local = triggered_at.astimezone(MARKET_TZ).strftime("%m/%d/%Y, %I:%M:%S %p")

    html = f"""
<div style="font-family: sans-serif; max-width: 500px; margin: 0 auto;">
  <h2 style="color: #1a1a1a;">Price Alert Triggered</h2>
  <div style="background: #f5f5f5; border-radius: 8px; padding: 16px; margin: 16px 0;">
    <h3 style="margin: 0 0 8px 0;">{title}</h3>
    <p style="margin: 4px 0;"><strong>Alert:</strong> {type_label} {target_label}</p>
    <p style="margin: 4px 0;"><strong>Current Price:</strong> ${current_price:.2f}</p>
    {change_html}
    <p style="margin: 4px 0; color: #666; font-size: 14px;">Triggered at {local} ET</p>
  </div>
  <p style="color: #666; font-size: 14px;">This alert has been deactivated. Set a new alert from your watchlist.</p>
</div>
"""
    return subject, html


class ResendNotifier:
    """Sends HTML email through the Resend API. ``send`` never raises."""

    def __init__(self, api_key: str, session: requests.Session | None = None,
                 api_url: str | None = None, from_address: str | None = None,
                 timeout: float | None = None):
        settings = get_settings()
        self.api_key = api_key
        self.session = session or requests.Session()
        self.api_url = api_url or settings.resend_api_url
        self.from_address = from_address or settings.alert_from_address
        self.timeout = timeout if timeout is not None else settings.http_timeout

    def send(self, to: str, subject: str, html: str) -> bool:
        try:
            resp = self.session.post(
                self.api_url,
                json={"from": self.from_address, "to": [to], "subject": subject, "html": html},
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.warning("Email send to %s failed: %s", to, e)
            return False
        if not resp.ok:
            logger.warning("Email provider returned HTTP %s for %s", resp.status_code, to)
            return False
        logger.info("Sent '%s' to %s", subject, to)
        return True
