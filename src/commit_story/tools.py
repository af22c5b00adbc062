"""MCP tool definitions wrapping the journal manager."""

from __future__ import annotations

from typing import Any, Callable, Optional

from . import telemetry
from .chat_collector import ChatCollector
from .errors import CommitStoryError
from .journal import MAX_CONTEXT_CHARS, MAX_REFLECTION_CHARS, JournalManager
from .models import format_timestamp

SessionDetector = Callable[[], Optional[str]]


def make_tools(manager: JournalManager) -> dict[str, dict]:
    """Create MCP tool definitions for the journal manager.

    Returns:
        Dict mapping tool names to their definitions.
    """

    tools = {}

    # ========== journal_add_reflection ==========
    tools["journal_add_reflection"] = {
        "name": "journal_add_reflection",
        "description": (
            "Add a developer reflection to the journal. Reflections are included in "
            "the journal entry of the next commit."
        ),
        "inputSchema": {
            "type": "object",
            "properties": {
                "text": {
                    "type": "string",
                    "description": f"The reflection text (1 to {MAX_REFLECTION_CHARS:,} characters)",
                },
                "timestamp": {
                    "type": "string",
                    "description": "Optional ISO 8601 timestamp (defaults to now)",
                },
            },
            "required": ["text"],
        },
    }

    # ========== journal_capture_context ==========
    tools["journal_capture_context"] = {
        "name": "journal_capture_context",
        "description": (
            "Capture the AI assistant's current understanding of the work in progress. "
            "Context captures help the next journal entry explain why changes were made."
        ),
        "inputSchema": {
            "type": "object",
            "properties": {
                "text": {
                    "type": "string",
                    "description": f"Context to capture (1 to {MAX_CONTEXT_CHARS:,} characters)",
                },
            },
            "required": ["text"],
        },
    }

    return tools


async def execute_tool(
    manager: JournalManager,
    name: str,
    arguments: dict[str, Any],
    detect_session: Optional[SessionDetector] = None,
) -> dict[str, Any]:
    """Execute a journal tool and return the result.

    Args:
        manager: JournalManager instance
        name: Tool name
        arguments: Tool arguments
        detect_session: Returns the active chat session id; defaults to
            scanning recent Claude Code messages

    Returns:
        Result dict with success status and data or error
    """
    with telemetry.span(f"{telemetry.NAMESPACE}.mcp.{name}", {
        f"{telemetry.NAMESPACE}.mcp.tool": name,
    }) as current:
        try:
            if name == "journal_add_reflection":
                text = arguments.get("text")
                if not isinstance(text, str):
                    raise ValueError("text parameter is required and must be a string")
                reflection, path = manager.add_reflection(text, arguments.get("timestamp"))
                return {
                    "success": True,
                    "file_path": str(path),
                    "timestamp": format_timestamp(reflection.timestamp),
                    "message": f"Reflection added to {path.name}",
                }

            elif name == "journal_capture_context":
                text = arguments.get("text")
                if not isinstance(text, str):
                    raise ValueError("text parameter is required and must be a string")
                if detect_session is None:
                    detect_session = ChatCollector(manager.config).detect_current_session
                session_id = detect_session()
                capture, path = manager.capture_context(text, session_id=session_id)
                return {
                    "success": True,
                    "file_path": str(path),
                    "timestamp": format_timestamp(capture.timestamp),
                    "session_id": session_id,
                    "message": f"Context captured to {path.name}",
                }

            else:
                return {
                    "success": False,
                    "error": f"Unknown tool: {name}",
                    "error_type": "unknown_tool",
                }

        except ValueError as e:
            telemetry.add_event(current, "validation_failed", {"error": str(e)})
            return {
                "success": False,
                "error": str(e),
                "error_type": "validation_error",
            }

        except OSError as e:
            return {
                "success": False,
                "error": str(e),
                "error_type": "write_error",
                "suggestion": "Check that the journal directory is writable",
            }

        except CommitStoryError as e:
            return {
                "success": False,
                "error": str(e),
                "error_type": "journal_error",
            }

        except Exception as e:
            return {
                "success": False,
                "error": str(e),
                "error_type": "unexpected_error",
            }
