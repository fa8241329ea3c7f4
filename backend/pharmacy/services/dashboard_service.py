# Overview: Headline figures for the pharmacy overview screen.

from __future__ import annotations

from datetime import date

from flask import current_app

from ..money import format_cents
from .alert_service import evaluate_alerts
from .journal_service import list_sales
from .stock_service import list_medicines


def get_overview(today: date | None = None) -> dict:
    """
    Totals over the current ledger and the whole journal.

    items_sold counts line items per sale (not units), matching how the
    overview has always been presented.
    """
    medicines = list_medicines()
    sales = list_sales()
    alerts = evaluate_alerts(
        medicines,
        today,
        threshold=current_app.config["LOW_STOCK_THRESHOLD"],
        window_days=current_app.config["EXPIRY_WINDOW_DAYS"],
    )

    stock_value_cents = sum(m.quantity * m.price_cents for m in medicines)
    revenue_cents = sum(sale.total_cents for sale in sales)

    return {
        "total_medicines": len(medicines),
        "stock_value": format_cents(stock_value_cents),
        "total_revenue": format_cents(revenue_cents),
        "total_sales": len(sales),
        "items_sold": sum(len(sale.items) for sale in sales),
        "units_sold": sum(sale.quantity_sold for sale in sales),
        "low_stock_count": len(alerts.low_stock),
        "expiring_soon_count": len(alerts.expiring_soon),
    }
