"""
Display tables for the agreement document.

Each builder takes an agreement snapshot and returns
{"headings": [{"text": ...}], "data": [[{"text": ...}, ...], ...]}
ready for a template. Money is held in pence and rendered as £x,xxx.xx;
missing amounts render as an empty string, never £0.00.
"""

from collections import OrderedDict
from typing import Any, Dict, List, Optional, Tuple

from agreements import money
from models import PaymentSchedule


def format_currency(value_in_pence: Optional[Any]) -> str:
    return money.format_currency(value_in_pence, in_pence=True)


def _cell(value: Any) -> Dict[str, Any]:
    return {"text": "" if value is None else value}


def _table(headings: List[str], rows: List[List[Any]]) -> Dict[str, Any]:
    return {
        "headings": [{"text": heading} for heading in headings],
        "data": [[_cell(value) for value in row] for row in rows],
    }


def _schedule(snapshot: Dict[str, Any]) -> PaymentSchedule:
    return PaymentSchedule.model_validate(snapshot.get("payment") or {})


def _parcel_number(sheet_id: Any, parcel_id: Any) -> str:
    return f"{sheet_id or ''} {parcel_id or ''}".strip()


def _format_date(value: Optional[str]) -> str:
    return money.format_payment_date(value) if value else ""


def _parcel_areas(snapshot: Dict[str, Any]) -> Dict[Tuple[Any, Any], Any]:
    areas = {}
    for parcel in (snapshot.get("application") or {}).get("parcel") or []:
        area = parcel.get("area") or {}
        areas[(parcel.get("sheetId"), parcel.get("parcelId"))] = area.get("quantity")
    return areas


def build_parcel_table(snapshot: Dict[str, Any]) -> Dict[str, Any]:
    """One row per land parcel in first-seen order"""
    schedule = _schedule(snapshot)
    areas = _parcel_areas(snapshot)
    parcels = OrderedDict()

    for item in schedule.parcelItems.values():
        key = (item.sheetId, item.parcelId)
        parcels.setdefault(key, areas.get(key))
    for key, area in areas.items():
        parcels.setdefault(key, area)

    rows = [[_parcel_number(*key), area] for key, area in parcels.items()]
    return _table(["Parcel", "Total parcel area (ha)"], rows)


def build_action_table(snapshot: Dict[str, Any]) -> Dict[str, Any]:
    """Actions per parcel with quantity and the agreement dates"""
    schedule = _schedule(snapshot)
    start = _format_date(schedule.agreementStartDate)
    end = _format_date(schedule.agreementEndDate)

    rows = []
    for item in schedule.parcelItems.values():
        rows.append([
            _parcel_number(item.sheetId, item.parcelId),
            item.code,
            item.description,
            f"{item.quantity} {item.unit or ''}".strip() if item.quantity is not None else "",
            start,
            end,
        ])

    return _table(
        ["Parcel", "Code", "Action", "Total size", "Start date", "End date"],
        rows
    )


def build_payment_table(snapshot: Dict[str, Any]) -> Dict[str, Any]:
    """
    Yearly payment per action code.

    Parcel items sharing a code are combined; agreement-level items are
    merged in and the rows sorted alphabetically by code.
    """
    schedule = _schedule(snapshot)
    by_code: Dict[str, Dict[str, Any]] = {}

    for item in schedule.parcelItems.values():
        row = by_code.setdefault(item.code, {
            "code": item.code,
            "description": item.description,
            "quantity": 0.0,
            "unit": item.unit,
            "rate": format_currency(item.rateInPence),
            "annualPaymentPence": 0,
        })
        row["quantity"] += item.quantity or 0
        row["annualPaymentPence"] += item.annualPaymentPence or 0

    for item in schedule.agreementLevelItems.values():
        row = by_code.setdefault(item.code, {
            "code": item.code,
            "description": item.description,
            "quantity": None,
            "unit": None,
            "rate": format_currency(item.annualPaymentPence),
            "annualPaymentPence": 0,
        })
        row["annualPaymentPence"] += item.annualPaymentPence or 0

    rows = []
    for code in sorted(by_code, key=lambda c: c or ""):
        row = by_code[code]
        size = f"{round(row['quantity'], 4)} {row['unit'] or ''}".strip() if row["quantity"] is not None else ""
        rate = f"{row['rate']} per {row['unit']}" if row["unit"] and row["rate"] else row["rate"]
        rows.append([
            row["code"],
            row["description"],
            size,
            rate,
            format_currency(row["annualPaymentPence"]),
        ])

    return _table(
        ["Code", "Action", "Total size", "Payment rate", "Total yearly payment"],
        rows
    )


def _line_item_code(line_item, schedule: PaymentSchedule) -> Optional[str]:
    if line_item.parcelItemId is not None:
        item = schedule.parcelItems.get(str(line_item.parcelItemId))
    else:
        item = schedule.agreementLevelItems.get(str(line_item.agreementLevelItemId))
    return item.code if item else None


def build_annual_schedule(snapshot: Dict[str, Any]) -> Dict[str, Any]:
    """
    Matrix of payments: one row per code, one column per calendar year of
    the instalment payment dates, a per-code total column and a final
    totals row.
    """
    schedule = _schedule(snapshot)
    totals: Dict[str, Dict[int, int]] = {}
    years = set()

    for payment in schedule.payments:
        year = int(payment.paymentDate[:4])
        years.add(year)
        for line_item in payment.lineItems:
            code = _line_item_code(line_item, schedule)
            if code is None:
                continue
            per_year = totals.setdefault(code, {})
            per_year[year] = per_year.get(year, 0) + line_item.paymentPence

    ordered_years = sorted(years)
    rows = []
    for code in sorted(totals):
        per_year = totals[code]
        rows.append(
            [code]
            + [format_currency(per_year.get(year)) for year in ordered_years]
            + [format_currency(sum(per_year.values()))]
        )

    year_totals = [sum(per_year.get(year, 0) for per_year in totals.values()) for year in ordered_years]
    rows.append(
        ["Total"]
        + [format_currency(total) for total in year_totals]
        + [format_currency(sum(year_totals))]
    )

    return _table(
        ["Code"] + [f"Year {year}" for year in ordered_years] + ["Total payment"],
        rows
    )


def build_agreement_tables(snapshot: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "agreementNumber": snapshot.get("agreementNumber"),
        "status": snapshot.get("status"),
        "agreementLand": build_parcel_table(snapshot),
        "summaryOfActions": build_action_table(snapshot),
        "summaryOfPayments": build_payment_table(snapshot),
        "annualPaymentSchedule": build_annual_schedule(snapshot),
    }
