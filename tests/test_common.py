"""Tests for shared helpers."""

import logging

import pytest

from troupe.common import (
    init_logging,
    stringify_arguments,
    stringify_value,
)


@pytest.mark.parametrize(
    "value, expected",
    [
        ("text", "text"),
        (2, "2"),
        (1.5, "1.5"),
        (True, "true"),
        (None, "null"),
        ([1, "a"], '[1,"a"]'),
        ({"k": "ü"}, '{"k":"ü"}'),
    ],
)
def test_stringify_value(value, expected) -> None:
    assert stringify_value(value) == expected


def test_stringify_arguments() -> None:
    assert stringify_arguments({"a": 1, "b": "x"}) == {"a": "1", "b": "x"}


def test_init_logging_quiets_sdk_loggers() -> None:
    init_logging("debug")

    for name in ("httpx", "openai", "anthropic"):
        assert logging.getLogger(name).level == logging.WARNING
