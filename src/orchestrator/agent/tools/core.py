"""Shared internals for the chat agent's invoice tools.

Contains the ToolContext handed to every handler, the result helpers
(_ok/_err), the ToolSpec/ToolRegistry pair that validates arguments
against each tool's pydantic model before a handler runs, and small
helpers shared by the handler submodules.
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as ArgsValidationError
from pydantic.alias_generators import to_camel

from src.errors.domain import DomainError
from src.services.email_service import QuickBooksEmailService
from src.services.quickbooks_auth import utc_now
from src.services.quickbooks_gateway import QuickBooksGateway

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Context + Argument Models
# ---------------------------------------------------------------------------


@dataclass
class ToolContext:
    """Per-turn dependencies passed to tool handlers."""

    gateway: QuickBooksGateway
    email_service: QuickBooksEmailService
    now_fn: Callable[[], datetime] = utc_now
    session_id: str | None = None

    def now(self) -> datetime:
        return self.now_fn()


class ToolArgs(BaseModel):
    """Base for tool argument models.

    Field names are snake_case in Python and camelCase on the wire
    (``invoice_number`` <-> ``invoiceNumber``). Unknown keys are ignored.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


# ---------------------------------------------------------------------------
# Response Helpers
# ---------------------------------------------------------------------------


def _ok(**data: Any) -> dict[str, Any]:
    """Build a successful tool result."""
    return {"success": True, **data}


def _err(message: str, **extra: Any) -> dict[str, Any]:
    """Build a failed tool result.

    Args:
        message: Human-readable error message.
        **extra: Additional fields (e.g. ``details``).
    """
    return {"success": False, "error": message, **extra}


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

ToolHandler = Callable[[Any, ToolContext], Awaitable[dict[str, Any]]]


@dataclass(frozen=True)
class ToolSpec:
    """One registered tool: name, description, argument model and handler."""

    name: str
    description: str
    args_model: type[ToolArgs]
    handler: ToolHandler

    def input_schema(self) -> dict[str, Any]:
        """JSON schema for the tool's arguments (camelCase property names)."""
        schema = self.args_model.model_json_schema(by_alias=True)
        schema.pop("title", None)
        schema.setdefault("properties", {})
        return schema

    def to_anthropic(self) -> dict[str, Any]:
        """Render as an Anthropic Messages API tool definition."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema(),
        }


@dataclass
class ToolRegistry:
    """Typed command registry for the chat agent.

    The LLM only selects a registered name and supplies arguments; the
    registry validates them and runs the handler. Handlers never raise
    into the agent loop: every failure becomes an ``_err`` result.
    """

    _tools: dict[str, ToolSpec] = field(default_factory=dict)

    def register(self, spec: ToolSpec) -> None:
        if spec.name in self._tools:
            raise ValueError(f"Tool '{spec.name}' is already registered")
        self._tools[spec.name] = spec

    def get(self, name: str) -> ToolSpec | None:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return list(self._tools)

    def definitions(self) -> list[dict[str, Any]]:
        """Anthropic tool definitions for every registered tool."""
        return [spec.to_anthropic() for spec in self._tools.values()]

    async def dispatch(
        self,
        name: str,
        raw_args: dict[str, Any] | None,
        ctx: ToolContext,
    ) -> dict[str, Any]:
        """Validate arguments and run one tool.

        Args:
            name: Registered tool name.
            raw_args: Arguments as produced by the LLM.
            ctx: Per-turn dependencies.

        Returns:
            The tool result dict (``success`` is always present).
        """
        spec = self._tools.get(name)
        if spec is None:
            logger.warning("LLM requested unknown tool %r", name)
            return _err(f"Unknown tool: {name}")

        try:
            args = spec.args_model.model_validate(raw_args or {})
        except ArgsValidationError as e:
            logger.info("Rejected arguments for %s: %s", name, e.error_count())
            return _err(
                f"Invalid arguments for {name}",
                details=e.errors(include_url=False, include_context=False),
            )

        try:
            return await spec.handler(args, ctx)
        except DomainError as e:
            logger.info("Tool %s failed: %s", name, e.message)
            if e.details is not None:
                return _err(e.message, details=e.details)
            return _err(e.message)
        except Exception as e:
            logger.exception("Tool %s raised unexpectedly", name)
            return _err(f"{name} failed: {e}")


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------


def money(value: Any) -> str:
    """Format a number as a 2-decimal amount string."""
    try:
        return f"{float(value):.2f}"
    except (TypeError, ValueError):
        return "0.00"
