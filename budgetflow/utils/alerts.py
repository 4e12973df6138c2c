"""
Настройка логирования budgetflow и алерты об ошибках в Telegram.

Модуль предоставляет обработчик логов `TelegramAlertHandler`, который перехватывает
сообщения уровня WARNING и выше и отправляет их в указанные чаты Telegram с помощью
отдельного бота для алертов, и фильтр `SecretRedactingFilter`, вычищающий ключи API
из текста записей. Для подключения достаточно вызвать `setup_logging()` при старте
приложения (см. `budgetflow/main.py`).

Переменные окружения:
- TELEGRAM_BOT_ALERT — токен Telegram-бота для алёртов (обязателен для отправки).
- TELEGRAM_ALERT_CHAT_ID — идентификатор(-ы) чатов (user/group) через запятую.
  Пример: "123456789,-1001234567890". Если значения не заданы, обработчик работает как no-op.
"""
import asyncio
import logging
from typing import Iterable, List, Optional

from aiogram import Bot

from budgetflow.config import settings

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


class SecretRedactingFilter(logging.Filter):
    """Заменяет значения секретов в тексте записи на маски."""

    def __init__(self, secrets: Iterable[tuple[Optional[str], str]]):
        super().__init__()
        self._secrets = [(s, mask) for s, mask in secrets if s]

    def filter(self, record: logging.LogRecord) -> bool:
        if not self._secrets:
            return True
        msg = record.getMessage()
        redacted = msg
        for secret, mask in self._secrets:
            redacted = redacted.replace(secret, mask)
        if redacted != msg:
            record.msg = redacted
            record.args = None
        return True


def default_secrets() -> list[tuple[Optional[str], str]]:
    return [
        (settings.SYNC_API_KEY, "***SYNC_KEY***"),
        (settings.LEDGER_TOKEN, "***LEDGER_TOKEN***"),
        (settings.HOST_INIT_DATA, "***INIT_DATA***"),
    ]


class TelegramAlertHandler(logging.Handler):
    """Обработчик логов, отправляющий записи уровня WARNING+ в Telegram через отдельного бота.

    Использует токен из `TELEGRAM_BOT_ALERT` и список чатов из `TELEGRAM_ALERT_CHAT_ID`.
    Если токен или список чатов не заданы, обработчик не выполняет отправку (no-op).
    Отправка идёт фоновой задачей, поэтому работает только внутри запущенного event loop.
    """

    def __init__(
        self,
        level: int = logging.WARNING,
        token: Optional[str] = None,
        chat_ids: Optional[str] = None,
    ) -> None:
        super().__init__(level=level)
        self._token: Optional[str] = token if token is not None else settings.TELEGRAM_BOT_ALERT
        self._chat_ids: List[int] = self._parse_chat_ids(
            chat_ids if chat_ids is not None else settings.TELEGRAM_ALERT_CHAT_ID
        )
        self._bot: Optional[Bot] = Bot(token=self._token) if self._token else None

    @property
    def enabled(self) -> bool:
        return self._bot is not None and bool(self._chat_ids)

    @staticmethod
    def _parse_chat_ids(raw: Optional[str]) -> List[int]:
        if not raw:
            return []
        ids: List[int] = []
        for part in raw.split(","):
            part = part.strip()
            if not part:
                continue
            try:
                ids.append(int(part))
            except ValueError:
                continue
        return ids

    def emit(self, record: logging.LogRecord) -> None:  # type: ignore[override]
        if not self.enabled:
            return
        # алерты из логгеров самого aiogram не пересылаем, иначе сбой отправки зациклится
        if record.name.startswith("aiogram"):
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        try:
            msg = self.format(record)
            loop.create_task(self._send(msg))
        except Exception:
            self.handleError(record)

    async def _send(self, text: str) -> None:
        assert self._bot is not None
        for chat_id in self._chat_ids:
            try:
                await self._bot.send_message(chat_id=chat_id, text=f"🚨 Alert:\n{text[:3500]}")
            except Exception as e:
                logging.getLogger("aiogram.alerts").debug(f"[ALERT] send to {chat_id} failed: {e}")


def setup_logging(level: int = logging.INFO) -> None:
    """Консольный вывод + `TelegramAlertHandler` на корневом логгере.

    Функцию можно вызывать многократно — дубликаты обработчиков не будут добавлены.
    """
    root = logging.getLogger()
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT)
    redactor = SecretRedactingFilter(default_secrets())

    if not any(isinstance(h, logging.StreamHandler) and getattr(h, "_budgetflow", False) for h in root.handlers):
        console = logging.StreamHandler()
        console._budgetflow = True  # type: ignore[attr-defined]
        console.setFormatter(formatter)
        console.addFilter(redactor)
        root.addHandler(console)

    if not any(isinstance(h, TelegramAlertHandler) for h in root.handlers):
        alert = TelegramAlertHandler(level=logging.WARNING)
        alert.setFormatter(formatter)
        alert.addFilter(redactor)
        root.addHandler(alert)

    root.setLevel(level)
