# Overview: Flask API routes for payment reporting; parses input and returns JSON responses.

# backend/stockbill/routes/payments.py
"""
Payment reporting routes (read-only).

- /purchases: payment rows regrouped into logical purchases
- /plans: progress of multi-installment card plans
- /statement/<card_id>: current, next-cycle and future totals for one card
"""
from flask import Blueprint, request, current_app

from ..services.card_service import CardNotFoundError
from ..services.reporting_service import (
    ReportError,
    card_statement,
    installment_plans_report,
    purchases_report,
)
from ..time_utils import parse_iso_date

payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


def _as_of_arg():
    raw = request.args.get("as_of")
    if not raw:
        return None
    try:
        return parse_iso_date(raw)
    except ValueError:
        raise ReportError("as_of must be an ISO-8601 date") from None


@payments_bp.get("/purchases")
def purchases_route():
    """
    Query params (all optional):
    - card_id: int
    - method: CARD | CASH | TRANSFER
    - start, end: ISO-8601 dates, inclusive
    """
    try:
        groups = purchases_report(
            card_id=request.args.get("card_id", type=int),
            method=request.args.get("method"),
            start=request.args.get("start"),
            end=request.args.get("end"),
        )
    except ReportError as e:
        return {"error": str(e)}, 400
    except Exception:
        current_app.logger.exception("Failed to load purchases report")
        return {"error": "Internal server error"}, 500

    return {"items": groups, "count": len(groups)}


@payments_bp.get("/plans")
def plans_route():
    try:
        plans = installment_plans_report(
            card_id=request.args.get("card_id", type=int),
            today=_as_of_arg(),
        )
    except ReportError as e:
        return {"error": str(e)}, 400
    except Exception:
        current_app.logger.exception("Failed to load installment plans")
        return {"error": "Internal server error"}, 500

    return {"items": plans}


@payments_bp.get("/statement/<int:card_id>")
def statement_route(card_id: int):
    """
    Query params:
    - as_of: ISO-8601 date (optional, default today UTC)
    - include_future: bool (optional, default true)
    """
    include_future = request.args.get("include_future", "true").lower() != "false"

    try:
        return card_statement(card_id, today=_as_of_arg(), include_future=include_future)
    except CardNotFoundError as e:
        return {"error": str(e)}, 404
    except ReportError as e:
        return {"error": str(e)}, 400
    except Exception:
        current_app.logger.exception("Failed to load card statement")
        return {"error": "Internal server error"}, 500
