from __future__ import annotations  # Re-export llm_gateway public API

from .llm_gateway import (
    HttpOracle,
    LanguageOracle,
    LlmGatewayError,
    OracleGateway,
    OraclePayloadInvalid,
    OracleUnavailable,
    to_chat_messages,
)

__all__ = [
    "HttpOracle",
    "LanguageOracle",
    "LlmGatewayError",
    "OracleGateway",
    "OraclePayloadInvalid",
    "OracleUnavailable",
    "to_chat_messages",
]
