import logging

from core.logger import get_logger, parse_size


def test_parse_size():
    assert parse_size("10MB") == 10 * 1024 * 1024
    assert parse_size("512kb") == 512 * 1024
    assert parse_size("1GB") == 1024**3
    assert parse_size(2048) == 2048


def test_get_logger_is_cached():
    first = get_logger("services.rule_matcher")

    assert first is get_logger("services.rule_matcher")
    assert isinstance(first, logging.Logger)
