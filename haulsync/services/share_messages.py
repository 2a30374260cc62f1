"""share_messages.py

Share text for one or more loads, in WhatsApp, plain text or email (HTML).

WhatsApp and plain text share the same layout; WhatsApp bolds the header with
*asterisks*. Headers follow the load type:
  pickup posting or live subtype  LIVE LOAD PICKUP AVAILABLE
  rfd subtype                     RFD LOAD AVAILABLE
  anything else                   LOAD AVAILABLE
A batch uses the shared type when every load agrees, else the generic header.
Rates and payouts are left out entirely when show_rates is off.
"""

from __future__ import annotations

from datetime import date
from html import escape
from typing import Any, Iterable

SHARE_FORMATS = ("whatsapp", "plain", "email")

ROUTE_ICON = "📍"
BOX_ICON = "📦"
MONEY_ICON = "💰"
CALENDAR_ICON = "📅"
TRUCK_ICON = "🚚"

SINGLE_HEADERS = {
    "LIVE_PICKUP": "LIVE LOAD PICKUP AVAILABLE",
    "RFD": "RFD LOAD AVAILABLE",
    "GENERIC": "LOAD AVAILABLE",
}
BATCH_HEADERS = {
    "LIVE_PICKUP": "{n} LIVE LOAD PICKUPS AVAILABLE",
    "RFD": "{n} RFD LOADS AVAILABLE",
    "GENERIC": "{n} LOADS AVAILABLE",
}
EMAIL_BATCH_HEADERS = {
    "LIVE_PICKUP": "{n} Live Load Pickups Available",
    "RFD": "{n} RFD Loads Available",
    "GENERIC": "{n} Loads Available",
}

_CELL = 'style="padding: 12px; border-bottom: 1px solid #eee;"'
_HEAD = 'style="padding: 12px; text-align: left;"'
_BUTTON = (
    'style="display: inline-block; background: #2563eb; color: white; padding: 12px 24px; '
    'text-decoration: none; border-radius: 6px; font-weight: 500;"'
)


def _field(load: Any, key: str) -> Any:
    if isinstance(load, dict):
        return load.get(key)
    return getattr(load, key, None)


def _number(value: Any) -> float | None:
    if value in (None, ""):
        return None
    number = float(value)
    return number or None


# ── Field formatting ──────────────────────────────────────────────────────────

def template_type(load: Any) -> str:
    if _field(load, "posting_type") == "pickup" or _field(load, "load_subtype") == "live":
        return "LIVE_PICKUP"
    if _field(load, "load_subtype") == "rfd":
        return "RFD"
    return "GENERIC"


def batch_template_type(loads: list[Any]) -> str:
    types = {template_type(load) for load in loads}
    return types.pop() if len(types) == 1 else "GENERIC"


def _place(city: str | None, state: str | None) -> str:
    if city and state:
        return f"{city}, {state}"
    return city or state or "TBD"


def format_route(load: Any) -> str:
    origin = _place(_field(load, "pickup_city"), _field(load, "pickup_state"))
    destination = _place(_field(load, "delivery_city"), _field(load, "delivery_state"))
    return f"{origin} → {destination}"


def _short_date(value: Any) -> str:
    if isinstance(value, str):
        value = date.fromisoformat(value[:10])
    return f"{value:%b} {value.day}"


def format_pickup_window(load: Any) -> str:
    start = _field(load, "pickup_window_start") or _field(load, "pickup_date")
    end = _field(load, "pickup_window_end")
    if not start and not end:
        return ""
    if start and end:
        first, last = _short_date(start), _short_date(end)
        return first if first == last else f"{first}–{last}"
    return _short_date(start or end)


def format_currency(amount: float) -> str:
    return f"${amount:,.0f}"


def _cubic_feet(load: Any) -> float | None:
    return _number(_field(load, "cubic_feet")) or _number(_field(load, "cubic_feet_estimate"))


def _balance_cf(load: Any) -> float | None:
    return _number(_field(load, "balance_cf")) or _number(_field(load, "remaining_cf"))


def _payout(load: Any) -> float | None:
    return _number(_field(load, "total_rate")) or _number(_field(load, "linehaul_amount"))


def _cf_text(load: Any, show_rates: bool) -> str:
    cf = _cubic_feet(load)
    if not cf:
        return ""
    rate = _number(_field(load, "rate_per_cuft"))
    if show_rates and rate:
        return f"{cf:,.0f} CF @ ${rate:.2f}/cf"
    return f"{cf:,.0f} CF"


def _header(text: str, company_name: str | None, *, bold: bool) -> str:
    header = f"*{text}*" if bold else text
    return f"{header} — {company_name}" if company_name else header


# ── WhatsApp / plain ──────────────────────────────────────────────────────────

def build_single_load_message(
    load: Any,
    *,
    format: str = "whatsapp",
    link: str | None = None,
    show_rates: bool = True,
    company_name: str | None = None,
) -> str:
    if format == "email":
        return _single_load_email(load, link=link, show_rates=show_rates, company_name=company_name)

    header = _header(SINGLE_HEADERS[template_type(load)], company_name, bold=format == "whatsapp")
    lines = [f"{TRUCK_ICON} {header}", "", f"{ROUTE_ICON} {format_route(load)}"]

    cf_text = _cf_text(load, show_rates)
    if cf_text:
        lines.append(f"{BOX_ICON} {cf_text}")
    balance = _balance_cf(load)
    if balance and balance > 0:
        lines.append(f"{BOX_ICON} Balance left: {balance:,.0f} CF")
    window = format_pickup_window(load)
    if window:
        lines.append(f"{CALENDAR_ICON} Pickup: {window}")
    payout = _payout(load) if show_rates else None
    if payout:
        lines.append(f"{MONEY_ICON} {format_currency(payout)} payout")

    if link:
        lines.extend(["", f"{ROUTE_ICON} Claim: {link}"])
    return "\n".join(lines)


def build_multi_load_message(
    loads: list[Any],
    *,
    format: str = "whatsapp",
    link: str | None = None,
    show_rates: bool = True,
    company_name: str | None = None,
) -> str:
    if not loads:
        return ""
    if len(loads) == 1:
        return build_single_load_message(
            loads[0], format=format, link=link, show_rates=show_rates, company_name=company_name
        )
    if format == "email":
        return _multi_load_email(loads, link=link, show_rates=show_rates, company_name=company_name)

    text = BATCH_HEADERS[batch_template_type(loads)].format(n=len(loads))
    lines = [f"{TRUCK_ICON} {_header(text, company_name, bold=format == 'whatsapp')}", ""]

    for index, load in enumerate(loads, start=1):
        parts = []
        cf_text = _cf_text(load, show_rates)
        if cf_text:
            parts.append(cf_text)
        balance = _balance_cf(load)
        if balance and balance > 0:
            parts.append(f"Balance: {balance:,.0f} CF")
        window = format_pickup_window(load)
        if window:
            parts.append(f"Pickup: {window}")
        payout = _payout(load) if show_rates else None
        if payout:
            parts.append(format_currency(payout))

        item = f"{index}. {format_route(load)}"
        if parts:
            item += "\n    " + " • ".join(parts)
        lines.append(item)

    if link:
        lines.extend(["", f"{ROUTE_ICON} View details & claim: {link}"])
    return "\n".join(lines)


# ── Email ─────────────────────────────────────────────────────────────────────

def _button(link: str | None, label: str) -> str:
    if not link:
        return ""
    return f'<p style="margin-top: 20px;"><a href="{escape(link)}" {_BUTTON}>{label}</a></p>'


def _single_load_email(load: Any, *, link: str | None, show_rates: bool, company_name: str | None) -> str:
    header = _header(SINGLE_HEADERS[template_type(load)], company_name, bold=False)
    details = []
    cf_text = _cf_text(load, show_rates)
    if cf_text:
        details.append(cf_text)
    balance = _balance_cf(load)
    if balance and balance > 0:
        details.append(f"Balance: {balance:,.0f} CF")
    window = format_pickup_window(load)
    if window:
        details.append(f"Pickup: {window}")
    payout = _payout(load) if show_rates else None
    if payout:
        details.append(f"Payout: {format_currency(payout)}")

    body = [
        '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">',
        f'<h2 style="color: #1a1a1a; margin-bottom: 16px;">{escape(header)}</h2>',
        f'<p style="font-size: 18px; color: #333; margin-bottom: 16px;"><strong>{escape(format_route(load))}</strong></p>',
    ]
    if details:
        body.append(f'<p style="color: #555; line-height: 1.6;">{"<br/>".join(escape(d) for d in details)}</p>')
    button = _button(link, "Claim This Load")
    if button:
        body.append(button)
    body.append("</div>")
    return "\n".join(body)


def _email_row(load: Any, show_rates: bool) -> str:
    cf = _cubic_feet(load)
    payout = _payout(load) if show_rates else None
    cells = (
        format_route(load),
        f"{cf:,.0f} CF" if cf else "TBD",
        format_pickup_window(load) or "TBD",
        format_currency(payout) if payout else "Call for rate",
    )
    return "<tr>" + "".join(f"<td {_CELL}>{escape(cell)}</td>" for cell in cells) + "</tr>"


def _multi_load_email(loads: Iterable[Any], *, link: str | None, show_rates: bool, company_name: str | None) -> str:
    loads = list(loads)
    text = EMAIL_BATCH_HEADERS[batch_template_type(loads)].format(n=len(loads))
    header = _header(text, company_name, bold=False)
    head = "".join(f"<th {_HEAD}>{label}</th>" for label in ("Route", "Size", "Pickup", "Payout"))
    rows = "\n".join(_email_row(load, show_rates) for load in loads)

    body = [
        '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">',
        f'<h2 style="color: #1a1a1a;">{escape(header)}</h2>',
        '<table style="width: 100%; border-collapse: collapse; margin: 20px 0;">',
        f'<thead><tr style="background: #f5f5f5;">{head}</tr></thead>',
        f"<tbody>\n{rows}\n</tbody>",
        "</table>",
    ]
    button = _button(link, "View All Loads")
    if button:
        body.append(button)
    body.append("</div>")
    return "\n".join(body)


def build_share_message(
    loads: list[Any],
    *,
    format: str = "whatsapp",
    link: str | None = None,
    show_rates: bool = True,
    company_name: str | None = None,
) -> str:
    if format not in SHARE_FORMATS:
        raise ValueError(f"Unknown share format: {format}")
    return build_multi_load_message(
        loads, format=format, link=link, show_rates=show_rates, company_name=company_name
    )
