"""load_financials.py

Pre-delivery COD check for carriers hauling another company's load.

  carrier_rate = actual_cuft_loaded x (contract rate, else rate_per_cuft)
                 + contract accessorials
  shortfall    = carrier_rate - balance due from the customer on delivery

COD is required only when the owning company is not trusted, the shortfall is
positive, COD has not been received and the company has not approved an
exception. In that case the driver must not unload.
"""

from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP
from typing import Any

from sqlalchemy.orm import Session

from haulsync.models.company import Company
from haulsync.models.load import Load

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def _to_decimal(value: Any) -> Decimal:
    if value is None:
        return ZERO
    return Decimal(str(value))


def _money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def requires_cod_payment(trust_level: str, carrier_rate: Any, customer_balance: Any) -> bool:
    if trust_level == "trusted":
        return False
    return _to_decimal(carrier_rate) - _to_decimal(customer_balance) > 0


def _collect_action(balance: Decimal, suffix: str) -> str:
    if balance > 0:
        return f"Collect ${balance:.2f} from customer{suffix}"
    return "Complete delivery"


def pre_delivery_check(load: Any, *, trust_level: str, company_name: str) -> dict[str, Any]:
    rate = _to_decimal(load.contract_rate_per_cuft) or _to_decimal(load.rate_per_cuft)
    carrier_rate = _money(
        _to_decimal(load.actual_cuft_loaded) * rate + _to_decimal(load.contract_accessorials_total)
    )
    balance = _money(_to_decimal(load.balance_due_on_delivery))
    shortfall = _money(carrier_rate - balance)

    is_trusted = trust_level == "trusted"
    cod_received = bool(load.cod_received)
    exception = bool(load.company_approved_exception)
    requires_cod = not is_trusted and shortfall > 0 and not cod_received and not exception

    level = "success"
    if cod_received:
        status = f"COD of ${shortfall:.2f} received from {company_name}"
        action = _collect_action(balance, " and complete delivery")
    elif exception:
        status = f"{company_name} approved delivery without COD"
        action = _collect_action(balance, " and complete delivery")
    elif is_trusted and shortfall > 0:
        status = f"TRUSTED - {company_name} will pay you ${shortfall:.2f} after delivery"
        action = _collect_action(balance, ", then complete delivery")
    elif is_trusted:
        status = "Customer balance covers your rate"
        action = _collect_action(balance, "")
    elif shortfall > 0:
        status = f"COD REQUIRED - {company_name} must pay ${shortfall:.2f} BEFORE you unload"
        action = f"DO NOT UNLOAD until you receive ${shortfall:.2f} from {company_name}"
        level = "danger"
    else:
        status = "Customer balance covers your rate - no COD needed"
        action = _collect_action(balance, "")

    return {
        "carrierRate": float(carrier_rate),
        "customerBalance": float(balance),
        "shortfall": float(shortfall),
        "trustLevel": trust_level,
        "isTrusted": is_trusted,
        "requiresCOD": requires_cod,
        "codAmountRequired": float(shortfall) if requires_cod else 0.0,
        "statusMessage": status,
        "actionRequired": action,
        "alertLevel": level,
    }


def delivery_check_for_load(db: Session, load: Load) -> dict[str, Any]:
    owner = db.query(Company).filter(Company.id == load.company_id).first()
    trust_level = (owner.trust_level if owner else None) or "cod_required"
    return pre_delivery_check(load, trust_level=trust_level, company_name=owner.name if owner else "Company")
