# Overview: Service-layer operations for card payment instruments.

from __future__ import annotations

from ..extensions import db
from ..models import Card
from .concurrency import run_with_retry


class CardError(Exception):
    """Raised for card operation errors."""
    pass


class CardNotFoundError(CardError):
    pass


def _check_day(value, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise CardError(f"{name} must be an integer")
    if value < 1 or value > 31:
        raise CardError(f"{name} must be between 1 and 31")
    return value


def create_card(*, alias: str, closing_day: int, due_day: int) -> Card:
    """
    Register a card with its statement closing day and payment due day.

    Days above a month's length are valid and clamp to the month's last day
    when cycles are computed.
    """
    alias = (alias or "").strip()
    if not alias:
        raise CardError("alias is required")
    _check_day(closing_day, "closing_day")
    _check_day(due_day, "due_day")

    def _op():
        card = Card(alias=alias, closing_day=closing_day, due_day=due_day)
        db.session.add(card)
        db.session.commit()
        return card

    return run_with_retry(_op)


def get_card(card_id: int) -> Card:
    card = db.session.get(Card, card_id)
    if card is None:
        raise CardNotFoundError(f"Card {card_id} not found")
    return card


def list_cards() -> list[Card]:
    return db.session.query(Card).order_by(Card.alias.asc(), Card.id.asc()).all()
