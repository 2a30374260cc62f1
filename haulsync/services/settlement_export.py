from __future__ import annotations

import csv
import io
from typing import Any

from reportlab.lib.pagesizes import letter
from reportlab.pdfgen import canvas


def _currency(value: float) -> str:
    sign = "-" if value < 0 else ""
    return f"{sign}${abs(value):,.2f}"


def settlement_filename(preview: dict[str, Any], extension: str) -> str:
    number = preview.get("tripNumber") or preview.get("tripId")
    return f"settlement-trip-{number}.{extension}"


def settlement_csv(preview: dict[str, Any]) -> str:
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(["section", "description", "detail", "amount"])
    writer.writerow(["driver", preview["driver"]["name"], preview["payModeLabel"], ""])

    for item in preview["breakdown"]:
        writer.writerow(["earnings", item["label"], item["calculation"], f"{item['amount']:.2f}"])
    writer.writerow(["earnings", "Gross pay", "", f"{preview['grossPay']:.2f}"])

    for item in preview["reimbursements"]:
        writer.writerow(["reimbursement", item["description"], item.get("paidBy") or "", f"{item['amount']:.2f}"])
    for item in preview["collections"]:
        writer.writerow(["collection", item["loadNumber"] or "", item["method"], f"{-item['amount']:.2f}"])

    writer.writerow(["total", "Net pay", "", f"{preview['netPay']:.2f}"])
    return output.getvalue()


def settlement_pdf(preview: dict[str, Any], company_name: str | None = None) -> bytes:
    output = io.BytesIO()
    width, height = letter
    pdf = canvas.Canvas(output, pagesize=letter)
    pdf.setTitle(settlement_filename(preview, "pdf"))

    y = height - 60

    def line(text: str, amount: str | None = None, *, font: str = "Helvetica", size: int = 10, gap: int = 16) -> None:
        nonlocal y
        if y < 60:
            pdf.showPage()
            y = height - 60
        pdf.setFont(font, size)
        pdf.drawString(50, y, text[:90])
        if amount is not None:
            pdf.drawRightString(width - 50, y, amount)
        y -= gap

    line(company_name or "Driver Settlement", font="Helvetica-Bold", size=16, gap=22)
    line(f"Trip {preview.get('tripNumber') or preview['tripId']}  |  {preview['driver']['name']}", size=11)
    metrics = preview["metrics"]
    line(
        f"{metrics['actualMiles']:,.0f} mi  |  {metrics['totalCuft']:,.0f} cf  |  "
        f"{metrics['daysWorked']} day(s)  |  {preview['payModeLabel']}",
        gap=26,
    )

    line("Earnings", font="Helvetica-Bold", size=12, gap=18)
    for item in preview["breakdown"]:
        line(f"{item['label']}: {item['calculation']}", _currency(item["amount"]))
    line("Gross pay", _currency(preview["grossPay"]), font="Helvetica-Bold", gap=24)

    if preview["reimbursements"]:
        line("Reimbursements", font="Helvetica-Bold", size=12, gap=18)
        for item in preview["reimbursements"]:
            line(item["description"], _currency(item["amount"]))
        y -= 8

    if preview["collections"]:
        line("Collected on delivery", font="Helvetica-Bold", size=12, gap=18)
        for item in preview["collections"]:
            line(f"{item['loadNumber'] or 'Load'} ({item['method']})", _currency(-item["amount"]))
        y -= 8

    line("Net pay", _currency(preview["netPay"]), font="Helvetica-Bold", size=13)

    pdf.showPage()
    pdf.save()
    output.seek(0)
    return output.read()
