import logging

from budgetflow.utils.alerts import SecretRedactingFilter, TelegramAlertHandler


def test_secrets_are_masked_in_log_records():
    record = logging.LogRecord("budgetflow", logging.WARNING, __file__, 1, "key=%s failed", ("anon-key",), None)
    SecretRedactingFilter([("anon-key", "***SYNC_KEY***"), (None, "***LEDGER_TOKEN***")]).filter(record)
    assert record.getMessage() == "key=***SYNC_KEY*** failed"


def test_alert_handler_without_token_is_noop():
    handler = TelegramAlertHandler(token="", chat_ids="123")
    assert handler.enabled is False
    handler.emit(logging.LogRecord("budgetflow", logging.ERROR, __file__, 1, "boom", None, None))


def test_chat_ids_parsing_skips_garbage():
    assert TelegramAlertHandler._parse_chat_ids("123, -1001234567890, , abc") == [123, -1001234567890]
    assert TelegramAlertHandler._parse_chat_ids(None) == []
