# app/domain/services/payout.py
from __future__ import annotations

from typing import Callable

from app.core.exceptions import ValidationError
from app.infrastructure.db.config import Settings

# payout(pot, players) -> сколько монет зачислить победителю
PayoutFunction = Callable[[int, int], int]


def fixed_payout(amount: int) -> PayoutFunction:
    """Фиксированная выплата независимо от банка (поведение по умолчанию)."""
    if amount < 0:
        raise ValidationError("payout amount must be >= 0")

    def _payout(pot: int, players: int) -> int:
        return amount

    return _payout


def pool_payout(winner_percent: int) -> PayoutFunction:
    """
    Победитель получает winner_percent% собранных взносов (округление вниз).
    Доли админа/приложения остаются в конфиге и не распределяются.
    """
    if not 0 <= winner_percent <= 100:
        raise ValidationError("winner_percent must be in [0, 100]")

    def _payout(pot: int, players: int) -> int:
        return pot * winner_percent // 100

    return _payout


def payout_from_settings(settings: Settings) -> PayoutFunction:
    if settings.PAYOUT_POLICY == "pool":
        total = settings.WINNER_POOL_PERCENT + settings.ADMIN_POOL_PERCENT + settings.APP_POOL_PERCENT
        if total > 100:
            raise ValidationError("pool percentages must not exceed 100 in total")
        return pool_payout(settings.WINNER_POOL_PERCENT)
    return fixed_payout(settings.WINNER_PAYOUT)
