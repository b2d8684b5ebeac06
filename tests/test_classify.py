"""Tests for classify_error, the message-sniffing boundary adapter."""

import asyncio
import json

import pytest
from pydantic import BaseModel, ValidationError

from neuralminer.recovery.classify import classify_error
from neuralminer.recovery.failures import FailureKind


class Keyword(BaseModel):
    score: int


def pydantic_error() -> ValidationError:
    try:
        Keyword(score="not a number")
    except ValidationError as e:
        return e
    raise AssertionError("expected a validation error")


def json_error() -> json.JSONDecodeError:
    try:
        json.loads("{not json")
    except json.JSONDecodeError as e:
        return e
    raise AssertionError("expected a decode error")


class LLMError(Exception):
    pass


class TestByType:
    def test_timeout(self):
        assert classify_error(TimeoutError()) == FailureKind.TIMEOUT_ERROR
        assert classify_error(asyncio.TimeoutError()) == FailureKind.TIMEOUT_ERROR

    def test_json_decode(self):
        assert classify_error(json_error()) == FailureKind.PARSING_ERROR

    def test_pydantic_validation(self):
        assert classify_error(pydantic_error()) == FailureKind.VALIDATION_ERROR

    def test_llm_error_name(self):
        assert classify_error(LLMError("boom")) == FailureKind.MODEL_ERROR


class TestByMessage:
    @pytest.mark.parametrize(
        "message,kind",
        [
            ("Request timed out after 30s", FailureKind.TIMEOUT_ERROR),
            ("gateway timeout", FailureKind.TIMEOUT_ERROR),
            ("Search API returned 503", FailureKind.EXTERNAL_API_ERROR),
            ("Rate limit reached", FailureKind.EXTERNAL_API_ERROR),
            ("invalid api_key supplied", FailureKind.EXTERNAL_API_ERROR),
            ("rapid growth in capital costs", FailureKind.UNKNOWN_ERROR),
            ("Could not parse response", FailureKind.PARSING_ERROR),
            ("Invalid JSON in completion", FailureKind.PARSING_ERROR),
            ("schema validation failed", FailureKind.VALIDATION_ERROR),
            ("OpenAI returned an empty completion", FailureKind.MODEL_ERROR),
            ("model is overloaded", FailureKind.MODEL_ERROR),
            ("something odd happened", FailureKind.UNKNOWN_ERROR),
        ],
    )
    def test_message_rules(self, message, kind):
        assert classify_error(RuntimeError(message)) == kind

    def test_plain_string(self):
        assert classify_error("rate limit exceeded") == FailureKind.EXTERNAL_API_ERROR

    def test_first_rule_wins(self):
        # Mentions both a timeout and the API
        assert classify_error(RuntimeError("API timeout")) == FailureKind.TIMEOUT_ERROR

    def test_none(self):
        assert classify_error(None) == FailureKind.UNKNOWN_ERROR
