"""Test helpers: fake QuickBooks/OAuth servers and a scripted LLM client."""

from tests.helpers.fake_llm import FakeAnthropic, llm_response, text_block, tool_use
from tests.helpers.fake_quickbooks import (
    FIXED_NOW,
    REALM_ID,
    FakeQuickBooks,
    FakeTokenEndpoint,
    fixed_clock,
    make_credential,
    make_gateway,
    make_settings,
    make_token_manager,
)

__all__ = [
    "FIXED_NOW",
    "REALM_ID",
    "FakeAnthropic",
    "FakeQuickBooks",
    "FakeTokenEndpoint",
    "fixed_clock",
    "llm_response",
    "make_credential",
    "make_gateway",
    "make_settings",
    "make_token_manager",
    "text_block",
    "tool_use",
]
