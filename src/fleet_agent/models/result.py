"""Result of an operation handled by the agent or the coordinator."""

from typing import Any, Literal

from pydantic import BaseModel, Field


class OperationResult(BaseModel):
    """Success or error outcome with optional content.

    Expected failures travel as error results; only unexpected faults raise.
    """

    status: Literal["success", "error"] = Field(...)
    content: Any = Field(None, description="Result payload or error message")

    @property
    def success(self) -> bool:
        return self.status == "success"

    @classmethod
    def success_result(cls, content: Any = None) -> "OperationResult":
        return cls(status="success", content=content)

    @classmethod
    def error_result(cls, message: Any = None) -> "OperationResult":
        return cls(status="error", content=message)

    @classmethod
    def from_response(cls, data: Any) -> "OperationResult":
        """Classify a coordinator reply.

        Args:
            data: Decoded JSON body, expected as {"status": ..., "content": ...}

        Returns:
            OperationResult, error when the body is not a recognized reply
        """
        if isinstance(data, dict) and data.get("status") in ("success", "error"):
            return cls(status=data["status"], content=data.get("content"))
        return cls.error_result(f"Unrecognized reply: {data!r}")
