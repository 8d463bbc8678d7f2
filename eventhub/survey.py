"""Survey share links and per-ward share statistics."""

from __future__ import annotations

from collections import Counter
from typing import Iterable
from urllib.parse import quote, urlencode

WHATSAPP_URL = "https://wa.me/"


def build_view_url(base_url: str, name: str, panchayath_name: str, ward_number: str) -> str:
    params = urlencode({"name": name.strip(), "panchayath": panchayath_name, "ward": ward_number})
    return f"{base_url.rstrip('/')}/survey-view?{params}"


def build_whatsapp_link(name: str, panchayath_name: str, ward_number: str, view_url: str) -> str:
    message = (
        "Check out our event!\n\n"
        f"Shared by: {name.strip()}\n"
        f"{panchayath_name}, Ward {ward_number}\n\n"
        f"View details here:\n{view_url}"
    )
    return f"{WHATSAPP_URL}?text={quote(message, safe='')}"


def share_counts(ward_ids: Iterable[int]) -> dict:
    counts = Counter(ward_ids)
    return {
        "wards": [{"ward_id": ward_id, "count": count} for ward_id, count in sorted(counts.items())],
        "total_shares": sum(counts.values()),
        "wards_with_shares": len(counts),
    }


def next_display_order(existing_orders: Iterable[int]) -> int:
    return max(existing_orders, default=0) + 1
