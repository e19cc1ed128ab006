"""Tool-calling chat agent for QuickBooks invoice management.

The agent runs a bounded Messages API loop: each step sends the system
prompt, the running message list and the registry's tool definitions to
the LLM, executes every requested tool through the ToolRegistry, and feeds
the results back. The loop ends when the model stops asking for tools or
after ``max_steps`` LLM calls.

Example:
    agent = InvoiceAgent(get_llm_client())
    result = await agent.run("show unpaid invoices", ctx, context=history)
    print(result.text, result.tool_calls)
"""

import json
import logging
from collections.abc import AsyncGenerator
from dataclasses import dataclass, field
from typing import Any

import anthropic

from src.config import get_settings
from src.errors.domain import UpstreamError
from src.orchestrator.agent.system_prompt import build_system_prompt
from src.orchestrator.agent.tools import ToolContext, ToolRegistry, build_registry

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS = 1024

# Tools whose results carry an invoice list for the slider.
_LISTING_TOOLS = frozenset({"searchInvoices", "openInvoiceSlider", "searchAndEmailInvoices"})


@dataclass
class ChatResult:
    """Outcome of one chat turn.

    Attributes:
        text: Final assistant reply.
        tool_calls: ``{toolName, args, result}`` entries in call order.
        steps: Number of LLM calls made.
    """

    text: str
    tool_calls: list[dict[str, Any]] = field(default_factory=list)
    steps: int = 0

    @property
    def successful(self) -> bool:
        """True when at least one tool call succeeded."""
        return any((call.get("result") or {}).get("success") for call in self.tool_calls)

    @property
    def invoices_found(self) -> int | None:
        counts = [
            len((call.get("result") or {}).get("invoices") or [])
            for call in self.tool_calls
            if call.get("toolName") in _LISTING_TOOLS
            and (call.get("result") or {}).get("success")
        ]
        return sum(counts) if counts else None

    def to_history(self) -> dict[str, Any]:
        """Shape accepted by ``ConversationStore.append_exchange``."""
        return {
            "message": self.text,
            "toolCalls": self.tool_calls,
            "successful": self.successful,
            "invoicesFound": self.invoices_found,
        }


def _block_to_param(block: Any) -> dict[str, Any]:
    """Convert a response content block back into a request content block."""
    if block.type == "tool_use":
        return {"type": "tool_use", "id": block.id, "name": block.name, "input": block.input}
    return {"type": "text", "text": getattr(block, "text", "")}


def _fallback_text(tool_calls: list[dict[str, Any]]) -> str:
    """Reply used when the step budget ran out before the model answered."""
    for call in reversed(tool_calls):
        result = call.get("result") or {}
        for key in ("summary", "message", "error"):
            if isinstance(result.get(key), str) and result[key]:
                return result[key]
    return ""


class InvoiceAgent:
    """Chat agent bound to an Anthropic client and a tool registry.

    Args:
        client: ``anthropic.AsyncAnthropic`` (or a compatible fake).
        registry: Tool registry; defaults to every invoice tool.
        model: Model id; defaults to the configured agent model.
        max_steps: Maximum LLM calls per turn.
        max_tokens: Per-call output token limit.
    """

    def __init__(
        self,
        client: Any,
        registry: ToolRegistry | None = None,
        model: str | None = None,
        max_steps: int | None = None,
        max_tokens: int = DEFAULT_MAX_TOKENS,
    ) -> None:
        settings = get_settings()
        self._client = client
        self._registry = registry or build_registry()
        self._model = model or settings.agent_model
        self._max_steps = max_steps or settings.agent_max_steps
        self._max_tokens = max_tokens

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    def _request(self, system: str, messages: list[dict[str, Any]]) -> dict[str, Any]:
        return {
            "model": self._model,
            "max_tokens": self._max_tokens,
            "system": system,
            "tools": self._registry.definitions(),
            "messages": messages,
        }

    async def _execute_tools(
        self,
        tool_uses: list[Any],
        ctx: ToolContext,
        tool_calls: list[dict[str, Any]],
    ) -> list[dict[str, Any]]:
        results = []
        for block in tool_uses:
            args = block.input if isinstance(block.input, dict) else {}
            result = await self._registry.dispatch(block.name, args, ctx)
            logger.info(
                "Tool %s -> success=%s", block.name, result.get("success")
            )
            tool_calls.append({"toolName": block.name, "args": args, "result": result})
            results.append({
                "type": "tool_result",
                "tool_use_id": block.id,
                "content": json.dumps(result, default=str),
                "is_error": not result.get("success", False),
            })
        return results

    async def stream(
        self,
        message: str,
        ctx: ToolContext,
        context: str = "",
        incremental: bool = True,
    ) -> AsyncGenerator[dict[str, Any], None]:
        """Run one chat turn and yield events as they happen.

        Args:
            message: The user's message.
            ctx: Per-turn tool dependencies.
            context: Conversation history block for the system prompt.
            incremental: Stream text deltas from the LLM. When False each
                step's text is emitted once, after the call completes.

        Yields:
            ``{"type": "text", "text"}`` for reply text,
            ``{"type": "tool", "call"}`` after each tool runs, and a final
            ``{"type": "done", "result": ChatResult}``.

        Raises:
            UpstreamError: If the LLM provider call fails.
        """
        system = build_system_prompt(context, ctx.now())
        messages: list[dict[str, Any]] = [{"role": "user", "content": message}]
        tool_calls: list[dict[str, Any]] = []
        text = ""
        steps = 0

        try:
            while steps < self._max_steps:
                steps += 1
                request = self._request(system, messages)
                if incremental:
                    async with self._client.messages.stream(**request) as llm_stream:
                        async for delta in llm_stream.text_stream:
                            yield {"type": "text", "text": delta}
                        response = await llm_stream.get_final_message()
                else:
                    response = await self._client.messages.create(**request)

                text = "".join(
                    block.text for block in response.content if block.type == "text"
                )
                if text and not incremental:
                    yield {"type": "text", "text": text}

                tool_uses = [block for block in response.content if block.type == "tool_use"]
                if response.stop_reason != "tool_use" or not tool_uses:
                    break

                messages.append({
                    "role": "assistant",
                    "content": [_block_to_param(block) for block in response.content],
                })
                first_new = len(tool_calls)
                results = await self._execute_tools(tool_uses, ctx, tool_calls)
                for call in tool_calls[first_new:]:
                    yield {"type": "tool", "call": call}
                messages.append({"role": "user", "content": results})
                text = ""
        except anthropic.APIError as e:
            status = getattr(e, "status_code", None)
            logger.error("LLM request failed (status %s): %s", status, e)
            raise UpstreamError(
                "Failed to process chat message",
                upstream_status=status,
                details={"provider": "anthropic", "message": str(e)},
                status_code=502 if status else 500,
            ) from e

        if not text:
            text = _fallback_text(tool_calls)
            if text:
                yield {"type": "text", "text": text}

        logger.info("Chat turn finished after %d step(s), %d tool call(s)", steps, len(tool_calls))
        yield {"type": "done", "result": ChatResult(text=text, tool_calls=tool_calls, steps=steps)}

    async def run(self, message: str, ctx: ToolContext, context: str = "") -> ChatResult:
        """Run one chat turn to completion.

        Raises:
            UpstreamError: If the LLM provider call fails.
        """
        result: ChatResult | None = None
        async for event in self.stream(message, ctx, context, incremental=False):
            if event["type"] == "done":
                result = event["result"]
        assert result is not None
        return result
