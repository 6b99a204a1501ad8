# Outbound LINE push messages for bills and packages.
# Delivery is best-effort: without LINE_CHANNEL_ACCESS_TOKEN it runs offline (no network),
# and transport errors are logged, never raised to the request that triggered them.
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

import requests

from . import models
from .config import get_settings

logger = logging.getLogger("roomledger.notify")


def send_message(external_user_id: Optional[str], message: Dict[str, Any]) -> bool:
    """
    Push one structured message to a LINE user.

    Returns True when the message was accepted by the API. Offline mode, a missing
    recipient id and transport failures all return False after logging.
    """
    if not external_user_id:
        logger.info("notify.skipped", extra={"reason": "no_recipient"})
        return False
    settings = get_settings()
    if not settings.line_enabled:
        # Offline mode for dev/CI: record what would have been sent
        logger.info("notify.offline", extra={"to": external_user_id, "alt_text": message.get("altText")})
        return False

    body = {"to": external_user_id, "messages": [message]}
    headers = {
        "Content-Type": "application/json",
        "Authorization": f"Bearer {settings.line_channel_access_token}",
    }
    try:
        response = requests.post(
            settings.line_push_url,
            json=body,
            headers=headers,
            timeout=settings.notify_timeout_seconds,
        )
        response.raise_for_status()
    except requests.RequestException as exc:
        logger.warning("notify.failed", extra={"to": external_user_id, "error": str(exc)})
        return False
    logger.info("notify.sent", extra={"to": external_user_id})
    return True


# ----------------
# Message builders
# ----------------
def _row(label: str, value: str, bold: bool = False) -> Dict[str, Any]:
    return {
        "type": "box",
        "layout": "horizontal",
        "contents": [
            {"type": "text", "text": label, "size": "sm", "color": "#555555", "flex": 0},
            {
                "type": "text",
                "text": value,
                "size": "sm",
                "align": "end",
                "weight": "bold" if bold else "regular",
            },
        ],
    }


def _money(value: Any) -> str:
    return f"{Decimal(str(value or 0)):,.2f}"


def _flex(alt_text: str, title: str, rows: List[Dict[str, Any]]) -> Dict[str, Any]:
    return {
        "type": "flex",
        "altText": alt_text,
        "contents": {
            "type": "bubble",
            "body": {
                "type": "box",
                "layout": "vertical",
                "spacing": "sm",
                "contents": [{"type": "text", "text": title, "weight": "bold", "size": "lg"}, {"type": "separator"}]
                + rows,
            },
        },
    }


def build_bill_message(bill: models.Bill, room_name: str, property_name: str) -> Dict[str, Any]:
    """
    Flex message for a bill.

    Every figure comes from the stored bill row; the total is shown exactly as
    persisted and is never recomputed here.
    """
    water_total = (bill.water_units or 0) * (bill.water_rate or 0)
    electric_total = (bill.electric_units or 0) * (bill.electric_rate or 0)
    rows = [
        _row("Property", property_name),
        _row("Room", room_name),
        _row("Billing date", bill.billing_date.strftime("%Y-%m-%d") if bill.billing_date else "-"),
        _row("Room price", _money(bill.room_price)),
        _row(f"Water ({bill.water_units} x {bill.water_rate})", _money(water_total)),
        _row(f"Electric ({bill.electric_units} x {bill.electric_rate})", _money(electric_total)),
        _row("Other charges", _money(bill.other_charges)),
        _row("Total", _money(bill.total_amount), bold=True),
        _row("Status", bill.status),
    ]
    if bill.note:
        rows.append(_row("Note", bill.note))
    return _flex("Your rent bill is ready", "Rent bill", rows)


def build_package_message(package: models.Package, property_name: str) -> Dict[str, Any]:
    rows = [
        _row("Property", property_name),
        _row("Package", package.name),
        _row("Status", package.status),
    ]
    if package.description:
        rows.append(_row("Details", package.description))
    if package.price:
        rows.append(_row("Cash on delivery", _money(package.price), bold=True))
    return _flex("A package has arrived for you", "New package", rows)
