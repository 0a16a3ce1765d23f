# app/core/exceptions.py
"""
Доменные исключения SpinWheel.

Все ошибки команд наследуются от SpinWheelError: у каждой есть стабильный
`code` (уходит клиенту) и HTTP-статус, по которому обработчик в app.main
собирает структурированный ответ {"error": code, "detail": message}.
"""
from __future__ import annotations

from typing import Any, Optional


class SpinWheelError(Exception):
    """Базовый класс всех доменных ошибок."""

    code: str = "error"
    status_code: int = 400

    def __init__(self, message: str = "", **context: Any) -> None:
        self.message = message or self.code
        self.context = context
        super().__init__(self.message)

    def to_dict(self) -> dict:
        body: dict[str, Any] = {"error": self.code, "detail": self.message}
        if self.context:
            body["context"] = {k: v for k, v in self.context.items() if v is not None}
        return body


class ValidationError(SpinWheelError, ValueError):
    """Некорректные входные данные; отклоняются до изменения состояния."""

    code = "validation_error"
    status_code = 422


class NotFoundError(SpinWheelError):
    code = "not_found"
    status_code = 404


class WheelNotFound(NotFoundError):
    def __init__(self, wheel_id: Any) -> None:
        self.wheel_id = wheel_id
        super().__init__(f"Wheel {wheel_id} not found", wheel_id=wheel_id)


class UserNotFound(NotFoundError):
    def __init__(self, user_id: Any) -> None:
        self.user_id = user_id
        super().__init__(f"User {user_id} not found", user_id=user_id)


class InvalidStateError(SpinWheelError):
    """Операция недопустима для текущего статуса колеса."""

    code = "invalid_state"
    status_code = 409


class ConflictError(SpinWheelError):
    """Нарушение политики или уникальности (повторный join, второе PENDING-колесо)."""

    code = "conflict"
    status_code = 409


class InsufficientFundsError(SpinWheelError):
    code = "insufficient_funds"
    status_code = 402

    def __init__(self, user_id: Any, balance: Optional[int] = None, delta: Optional[int] = None) -> None:
        self.user_id = user_id
        super().__init__(
            f"Insufficient balance for user {user_id}",
            user_id=user_id,
            balance=balance,
            delta=delta,
        )


class InternalConsistencyError(SpinWheelError):
    """
    Движок увидел невозможное состояние (например, 0 активных игроков
    в RUNNING-колесе). Логируется, цикл останавливается; клиенту не уходит.
    """

    code = "internal_consistency"
    status_code = 500
