# app/core/utils/validator.py
from __future__ import annotations

import re
from typing import Any, Final, Optional

from app.core.exceptions import ValidationError


class UserValidator:
    """
    Простые валидаторы для игрока.

    Использование:
        email = UserValidator.normalize_email(email)
        UserValidator.validate_email(email)
        UserValidator.validate_name(name)
    """

    # Базовый e-mail шаблон (ASCII), совместимый с большинством форм.
    _EMAIL_RE: Final[re.Pattern[str]] = re.compile(
        r"^[A-Za-z0-9._%+\-]+@[A-Za-z0-9.\-]+\.[A-Za-z]{2,}$"
    )

    NAME_MAX_LENGTH: Final[int] = 64

    @staticmethod
    def normalize_email(email: str) -> str:
        """
        Нормализует e-mail: обрезает пробелы и приводит к нижнему регистру.
        """
        return (email or "").strip().lower()

    @staticmethod
    def validate_email(email: str) -> None:
        """
        Проверяет формат e-mail. Бросает ValidationError при некорректном значении.
        """
        if not isinstance(email, str) or not email.strip():
            raise ValidationError("email is required")
        if not UserValidator._EMAIL_RE.match(email.strip()):
            raise ValidationError("invalid email format")

    @staticmethod
    def validate_name(name: Optional[str]) -> None:
        if name is None:
            return
        if not isinstance(name, str):
            raise ValidationError("name must be a string")
        if len(name.strip()) > UserValidator.NAME_MAX_LENGTH:
            raise ValidationError(f"name must be at most {UserValidator.NAME_MAX_LENGTH} characters")


class WheelValidator:
    """
    Проверки входа команд колеса. Вызываются до любых обращений к БД.
    """

    @staticmethod
    def _is_int(value: Any) -> bool:
        # bool: подкласс int, его не принимаем
        return isinstance(value, int) and not isinstance(value, bool)

    @staticmethod
    def validate_entry_fee(entry_fee: Any) -> None:
        if not WheelValidator._is_int(entry_fee) or entry_fee <= 0:
            raise ValidationError("entry_fee must be a positive integer", entry_fee=entry_fee)

    @staticmethod
    def validate_max_players(max_players: Any) -> None:
        if max_players is None:
            return
        if not WheelValidator._is_int(max_players) or max_players < 2:
            raise ValidationError("max_players must be an integer >= 2", max_players=max_players)

    @staticmethod
    def validate_id(value: Any, field: str) -> None:
        if value is None or (isinstance(value, str) and not value.strip()):
            raise ValidationError(f"{field} is required")

    @staticmethod
    def validate_wheel_id(wheel_id: Any) -> None:
        if not WheelValidator._is_int(wheel_id) or wheel_id <= 0:
            raise ValidationError("wheel_id must be a positive integer", wheel_id=wheel_id)

    @staticmethod
    def validate_amount(amount: Any) -> None:
        if not WheelValidator._is_int(amount) or amount <= 0:
            raise ValidationError("amount must be a positive integer", amount=amount)
