from __future__ import annotations

import re
from typing import Iterable
from urllib.parse import quote

from cart import CartItem
from catalog import format_price

WHATSAPP_BASE = "https://wa.me/"


def build_order_message(
    lines: Iterable[CartItem],
    customer_name: str,
    store_name: str,
    delivery: str,
) -> str:
    """Plain-text order summary sent to the shop over WhatsApp."""
    lines = list(lines)
    total = sum(i.line_total for i in lines)
    items = [
        f"{n}. {i.product.name} ({i.product.brand}) × {i.quantity} = {format_price(i.line_total)}"
        for n, i in enumerate(lines, start=1)
    ]
    parts = [
        f"🛒 *New Order - {store_name}*",
        "",
        f"👤 Customer: {customer_name.strip()}",
        f"📍 Delivery: {delivery}",
        "",
        "*Order Details:*",
        "",
        *items,
        "",
        f"💰 *Total: {format_price(total)}*",
        "",
        "Please confirm the order. 🙏",
    ]
    return "\n".join(parts)


def whatsapp_url(number: str, message: str) -> str:
    digits = re.sub(r"\D", "", number or "")
    return f"{WHATSAPP_BASE}{digits}?text={quote(message, safe='')}"


def default_customer_name(email: str) -> str:
    """Local part of the e-mail address, used to prefill the name field."""
    return (email or "").split("@", 1)[0]
