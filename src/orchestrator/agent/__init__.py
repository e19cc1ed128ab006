"""Invoice chat agent package.

Modules:
    client: InvoiceAgent, the bounded tool-calling loop
    system_prompt: Prompt builder with tool selection and response rules
    tools: Typed tool registry and handlers
"""

from src.orchestrator.agent.client import ChatResult, InvoiceAgent
from src.orchestrator.agent.system_prompt import build_system_prompt
from src.orchestrator.agent.tools import (
    ToolContext,
    ToolRegistry,
    build_registry,
    get_all_tool_definitions,
)

__all__ = [
    "ChatResult",
    "InvoiceAgent",
    "ToolContext",
    "ToolRegistry",
    "build_registry",
    "build_system_prompt",
    "get_all_tool_definitions",
]
