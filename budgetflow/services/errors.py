"""
Иерархия ошибок сервисного слоя.

Сервисы (API-клиент, каталог, курсы) бросают эти исключения; акторы их не
перехватывают, интерпретатор машины превращает любое исключение в событие
`ActorError`. Сервис отправки транзакций, наоборот, никогда не бросает:
он классифицирует ошибку в `SubmissionResult`.
"""


class BudgetFlowError(Exception):
    """Базовая ошибка budgetflow."""


class ServiceNotConfigured(BudgetFlowError):
    """Не заданы LEDGER_API_URL / SYNC_API_KEY: сервис работает в выключенном режиме."""

    def __init__(self, message: str = "Sync API not configured"):
        super().__init__(message)


class NetworkError(BudgetFlowError):
    """Сетевой сбой до получения HTTP-ответа."""


class RequestTimeout(NetworkError):
    def __init__(self, timeout: float):
        super().__init__(f"Request timeout after {timeout:g}s")
        self.timeout = timeout


class ApiError(BudgetFlowError):
    """Ответ API со статусом вне 2xx. Хранит тело ответа для диагностики."""

    def __init__(self, status: int, status_text: str, body: str = ""):
        super().__init__(f"API request failed: {status} {status_text}")
        self.status = status
        self.status_text = status_text
        self.body = body


class InvalidResponse(BudgetFlowError):
    """Ответ API пришёл, но его форма не распознана."""
