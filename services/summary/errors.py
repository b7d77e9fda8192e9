# services/summary/errors.py


class SummaryError(Exception):
    """Базовая ошибка сервиса summary."""


class TransientStorageError(SummaryError):
    """
    Сбой чтения/записи БД во время батча.
    Батч откатывается, курсор не двигается, следующий запуск повторит его.
    """


class QueryValidationError(SummaryError, ValueError):
    """Некорректные параметры запроса (диапазон времени, limit)."""


class InvariantViolation(SummaryError):
    """Невозможное состояние при слиянии сводок. Батч и запуск прерываются."""
