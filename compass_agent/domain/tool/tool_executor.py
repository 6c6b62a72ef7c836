import asyncio
import time
from typing import Any, Dict, Optional

import structlog

from compass_agent.domain.models.tooling import ToolResult
from compass_agent.domain.tool.tool_registry import ToolRegistry
from compass_agent.domain.tool.tool_validator import ToolParameterValidator
from compass_agent.infrastructure.observability.logging import agent_logger, metrics, summarize_output


logger = structlog.get_logger(__name__)


class IsolatedToolExecutor:
    """Runs one tool with validation, a timeout and fault isolation.

    Any exception raised by a tool becomes ``ToolResult(success=False)``;
    only cancellation propagates to the caller.
    """

    def __init__(self, registry: ToolRegistry, default_timeout: Optional[float] = None):
        self.registry = registry
        self.default_timeout = default_timeout

    async def execute_tool(
        self,
        tool_id: str,
        parameters: Dict[str, Any],
        session_id: Optional[str] = None
    ) -> ToolResult:
        tool = self.registry.get_tool(tool_id)
        if tool is None:
            logger.warning("unknown_tool", tool_name=tool_id)
            return ToolResult(tool_name=tool_id, success=False, error="Unknown tool")

        validation = ToolParameterValidator.validate_tool_call(tool.input_model, parameters)
        if not validation.is_valid:
            error = "; ".join(validation.errors)
            agent_logger.log_tool_execution(tool_id, session_id, parameters, success=False, error=error)
            return ToolResult(tool_name=tool_id, success=False, error=error)

        timeout = tool.timeout if tool.timeout is not None else self.default_timeout
        started = time.perf_counter()
        timed_out = False

        try:
            if timeout:
                data = await asyncio.wait_for(tool.handler(validation.parameters), timeout)
            else:
                data = await tool.handler(validation.parameters)
            result = ToolResult(tool_name=tool_id, success=True, data=data)

        except asyncio.TimeoutError:
            timed_out = True
            if tool.timeout_fallback is not None:
                result = ToolResult(tool_name=tool_id, success=True, data=tool.timeout_fallback(), timed_out=True)
            else:
                result = ToolResult(tool_name=tool_id, success=False, error="Tool execution timeout", timed_out=True)

        except asyncio.CancelledError:
            raise

        except Exception as e:
            logger.exception("tool_failed", tool_name=tool_id, session_id=session_id)
            result = ToolResult(tool_name=tool_id, success=False, error=str(e) or type(e).__name__)

        result.duration_ms = (time.perf_counter() - started) * 1000

        agent_logger.log_tool_execution(
            tool_name=tool_id,
            session_id=session_id,
            input_data=parameters,
            output_data=summarize_output(result.data) if result.success else None,
            duration_ms=result.duration_ms,
            success=result.success,
            error=result.error,
            timed_out=timed_out
        )
        metrics.record_latency(f"tool.{tool_id}", result.duration_ms, {"success": str(result.success).lower()})
        if timed_out:
            metrics.increment_counter("tool.timeout", tags={"tool": tool_id})

        return result
