"""
Error handling and formatting for agent runs
"""

import logging
from typing import Any, Dict, List, Optional

from ..provider_ir import ToolOutcome
from .errors import ToolError


logger = logging.getLogger(__name__)


class ErrorHandler:
    """Turns provider and tool failures into user-facing messages and outcomes"""

    def _hint_for(self, status_code: Optional[int], snippet: str) -> str:
        snippet_lower = snippet.lower()
        if status_code in (401, 403) or "invalid api key" in snippet_lower or "invalid x-api-key" in snippet_lower:
            return "The provider rejected the credential. Check the project's API key."
        if status_code == 429 or "rate limit" in snippet_lower or "slow_down" in snippet_lower:
            return "Provider indicated a rate limit or quota issue. Reduce request rate or wait before retrying."
        if "quota" in snippet_lower or "insufficient" in snippet_lower:
            return "The account has exhausted its quota. Check billing with the provider."
        if status_code == 404:
            return "The model was not found. Pick a model the provider offers."
        if status_code is not None and status_code >= 500:
            return "The provider is having trouble. Retry shortly."
        return "Verify provider credentials/quotas and model availability; rerun with a known-good model if needed."

    def handle_provider_error(self, error: Exception) -> Dict[str, Any]:
        """Handle provider API errors (transport failures, non-2xx responses)"""
        details = getattr(error, "details", None)
        status_code = getattr(error, "status_code", None)
        snippet = ""
        if isinstance(details, dict):
            snippet = details.get("body_snippet") or ""

        result: Dict[str, Any] = {
            "error": str(error),
            "error_type": error.__class__.__name__,
            "status_code": status_code,
            "hint": self._hint_for(status_code, snippet),
        }
        if details:
            result["details"] = details

        logger.error("Provider error (%s): %s", status_code, error)
        return result

    def format_provider_message(self, error: Exception) -> str:
        """One-line user-facing message for a fatal provider error"""
        status_code = getattr(error, "status_code", None)
        details = getattr(error, "details", None) or {}
        hint = self._hint_for(status_code, details.get("body_snippet") or "")
        return f"{error} ({hint})"

    def handle_execution_error(
        self,
        error: Exception,
        tool_name: str,
        tool_args: Dict[str, Any],
        tool_call_id: str,
    ) -> ToolOutcome:
        """Convert a tool exception into an error-flagged outcome"""
        if isinstance(error, ToolError):
            error_type = error.error_type
            logger.info("Tool %s failed (%s): %s", tool_name, error_type, error)
        else:
            error_type = "execution_error"
            logger.warning("Tool %s raised %s: %s", tool_name, error.__class__.__name__, error)
        return ToolOutcome(
            tool_call_id=tool_call_id,
            result=f"Error: {error}",
            is_error=True,
            name=tool_name,
            error_type=error_type,
        )

    def handle_validation_error(self, errors: List[str]) -> str:
        """Format argument validation errors for the model"""
        return "Invalid arguments:\n" + "\n".join(f"- {e}" for e in errors)
