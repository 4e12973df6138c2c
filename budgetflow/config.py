from dotenv import load_dotenv
load_dotenv()

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

class Settings(BaseSettings):
    """Конфигурация budgetflow.

    Все настройки подгружаются из окружения или файла `.env`. Ни одно поле
    не обязательное: без ключа API приложение работает в режиме
    "сервис не настроен", а не падает на старте.

    Атрибуты:
        LEDGER_API_URL (str | None): Базовый URL API леджера и каталога.
        SYNC_API_KEY (str | None): Анонимный ключ (`X-Anonymous-Key`).
        LEDGER_TOKEN (str | None): Bearer-токен сервисной роли.
        HOST_INIT_DATA (str | None): Подписанный токен хоста (Telegram initData).
        DB_URL (str): URL базы для долговременного кэша и снэпшотов флоу.
        SETTLEMENT_CURRENCY (str): Валюта расчётов леджера.
    """
    LEDGER_API_URL: str | None = Field(default=None, alias="LEDGER_API_URL")
    SYNC_API_KEY: str | None = Field(default=None, alias="SYNC_API_KEY")
    LEDGER_TOKEN: str | None = Field(default=None, alias="LEDGER_TOKEN")
    HOST_INIT_DATA: str | None = Field(default=None, alias="HOST_INIT_DATA")
    DB_URL: str = Field(default="sqlite+aiosqlite:///./data/budgetflow.db", alias="DB_URL")
    SETTLEMENT_CURRENCY: str = Field(default="EUR", alias="SETTLEMENT_CURRENCY")

    # TTL кэшей, секунды
    ACCOUNTS_CACHE_TTL: float = Field(default=60, alias="ACCOUNTS_CACHE_TTL")
    CATEGORIES_CACHE_TTL: float = Field(default=60, alias="CATEGORIES_CACHE_TTL")
    SUGGESTIONS_CACHE_TTL: float = Field(default=60, alias="SUGGESTIONS_CACHE_TTL")
    EXCHANGE_RATE_CACHE_TTL: float = Field(default=3600, alias="EXCHANGE_RATE_CACHE_TTL")
    BALANCE_CACHE_TTL: float = Field(default=300, alias="BALANCE_CACHE_TTL")
    TRANSACTIONS_CACHE_TTL: float = Field(default=60, alias="TRANSACTIONS_CACHE_TTL")

    REQUEST_TIMEOUT: float = Field(default=30.0, alias="REQUEST_TIMEOUT")
    INIT_TIMEOUT: float = Field(default=5.0, alias="INIT_TIMEOUT")
    VERIFY_ATTEMPTS: int = Field(default=2, alias="VERIFY_ATTEMPTS")
    VERIFY_DELAY: float = Field(default=0.5, alias="VERIFY_DELAY")
    SUGGESTIONS_LIMIT: int = Field(default=50, alias="SUGGESTIONS_LIMIT")

    HEALTH_CHECK_CRON: str = Field(default="*/5 * * * *", alias="HEALTH_CHECK_CRON")
    CACHE_PURGE_CRON: str = Field(default="0 * * * *", alias="CACHE_PURGE_CRON")

    DEBUG_WEBHOOK_URL: str | None = Field(default=None, alias="DEBUG_WEBHOOK_URL")
    TELEGRAM_BOT_ALERT: str | None = Field(default=None, alias="TELEGRAM_BOT_ALERT")
    TELEGRAM_ALERT_CHAT_ID: str | None = Field(default=None, alias="TELEGRAM_ALERT_CHAT_ID")

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )

    @property
    def is_configured(self) -> bool:
        return bool(self.LEDGER_API_URL and self.SYNC_API_KEY)

settings = Settings()
