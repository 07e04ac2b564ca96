# Overview: Flask API routes for payment cards.

# backend/stockbill/routes/cards.py
from flask import Blueprint, request, current_app

from ..models import Card
from ..services.card_service import CardError, CardNotFoundError, create_card, get_card, list_cards
from ..services.billing_cycle import current_closing_date, next_closing_date, next_due_date
from ..time_utils import today_utc
from ..validation import ModelValidationPolicy, validate_payload, enforce_rules_card, ValidationError

CARD_POLICY = ModelValidationPolicy(
    writable_fields={"alias", "closing_day", "due_day"},
    required_on_create={"alias", "closing_day", "due_day"},
)

cards_bp = Blueprint("cards", __name__, url_prefix="/api/cards")


def _card_view(card: Card) -> dict:
    today = today_utc()
    return {
        **card.to_dict(),
        "current_closing_date": current_closing_date(card.closing_day, today).isoformat(),
        "next_closing_date": next_closing_date(card.closing_day, today).isoformat(),
        "next_due_date": next_due_date(card.due_day, today).isoformat(),
    }


@cards_bp.get("")
def list_cards_route():
    return {"items": [_card_view(c) for c in list_cards()]}


@cards_bp.post("")
def create_card_route():
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Card, payload=payload, policy=CARD_POLICY, partial=False)
        enforce_rules_card(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        card = create_card(alias=patch["alias"], closing_day=patch["closing_day"], due_day=patch["due_day"])
    except CardError as e:
        return {"error": str(e)}, 400
    except Exception:
        current_app.logger.exception("Failed to create card")
        return {"error": "Internal server error"}, 500

    return _card_view(card), 201


@cards_bp.get("/<int:card_id>")
def get_card_route(card_id: int):
    try:
        return _card_view(get_card(card_id))
    except CardNotFoundError as e:
        return {"error": str(e)}, 404
