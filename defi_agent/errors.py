"""Error taxonomy for the transaction pipeline.

Every error carries a JSON-RPC style ``code``, a plain-text ``message`` that is
safe to show to the user, and optional structured ``data`` for diagnostics.
Hooks convert these into failed tasks at the point where they are raised.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603
TASK_NOT_FOUND = -32001
TASK_NOT_CANCELABLE = -32002
UNSUPPORTED_OPERATION = -32004


class PipelineError(Exception):
    """Base class for all errors raised by pipeline stages."""

    code: int = INTERNAL_ERROR

    def __init__(
        self,
        message: str,
        *,
        code: Optional[int] = None,
        data: Any = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.data = data

    def to_jsonrpc_error(self) -> Dict[str, Any]:
        error: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data is not None:
            error["data"] = self.data
        return error


class ConfigurationError(PipelineError):
    """Required configuration (RPC URL, signer, user address) is missing."""

    code = INVALID_REQUEST


class TokenNotFoundError(PipelineError):
    code = INVALID_PARAMS


class ChainAmbiguousError(PipelineError):
    """A symbol exists on several chains and the user must pick one."""

    code = INVALID_PARAMS


class InsufficientBalanceError(PipelineError):
    code = INVALID_PARAMS


class ResponseValidationError(PipelineError):
    """Capability server returned data that does not match the expected schema."""

    code = INTERNAL_ERROR

    def __init__(self, message: str, payload: Any = None, errors: Any = None) -> None:
        super().__init__(message, data={"errors": errors} if errors else None)
        self.payload = payload
        self.errors = errors


class CapabilityServerError(PipelineError):
    """The capability server reported an error for a tool call."""


class CapabilityServerUnavailableError(CapabilityServerError):
    """The capability server could not be reached or timed out."""


class ParseError(CapabilityServerError):
    code = PARSE_ERROR


class InvalidRequest(CapabilityServerError):
    code = INVALID_REQUEST


class MethodNotFound(CapabilityServerError):
    code = METHOD_NOT_FOUND


class InvalidParams(CapabilityServerError):
    code = INVALID_PARAMS


class InternalError(CapabilityServerError):
    code = INTERNAL_ERROR


class TaskNotFound(PipelineError):
    code = TASK_NOT_FOUND


class TaskNotCancelable(PipelineError):
    code = TASK_NOT_CANCELABLE


class UnsupportedOperation(PipelineError):
    """The requested action is not offered by any configured component."""

    code = UNSUPPORTED_OPERATION


_JSONRPC_ERRORS = {
    PARSE_ERROR: ParseError,
    INVALID_REQUEST: InvalidRequest,
    METHOD_NOT_FOUND: MethodNotFound,
    INVALID_PARAMS: InvalidParams,
    INTERNAL_ERROR: InternalError,
}


def error_from_jsonrpc(error: Any) -> CapabilityServerError:
    """Build a typed error from a JSON-RPC ``error`` object."""
    if not isinstance(error, dict):
        return CapabilityServerError(str(error) or "Capability server error")
    code = error.get("code")
    message = error.get("message") or str(error)
    cls = _JSONRPC_ERRORS.get(code, CapabilityServerError)
    if isinstance(code, int) and cls is CapabilityServerError:
        return CapabilityServerError(message, code=code, data=error.get("data"))
    return cls(message, data=error.get("data"))


class RpcUnavailableError(PipelineError):
    """A chain RPC read or write failed at the transport level."""


class ChainNotConfiguredError(ConfigurationError):
    def __init__(self, chain_id: str) -> None:
        super().__init__(f"No RPC endpoint configured for chain {chain_id}.")
        self.chain_id = chain_id


class ExecutionError(PipelineError):
    """Base exception for transaction execution errors.

    ``executed`` lists the transactions of the same plan that were already
    confirmed on-chain before this failure.
    """

    def __init__(
        self,
        message: str,
        *,
        code: Optional[int] = None,
        data: Any = None,
        executed: Optional[Sequence[Any]] = None,
    ) -> None:
        super().__init__(message, code=code, data=data)
        self.executed: List[Any] = list(executed or [])


class PlanValidationError(ExecutionError):
    """A plan entry cannot be turned into a transaction."""

    code = INVALID_PARAMS


class EmptyTransactionPlanError(ExecutionError):
    def __init__(self, message: str = "Transaction plan is empty.") -> None:
        super().__init__(message)


class GasEstimationError(ExecutionError):
    """Gas estimation failed."""


class TransactionSubmitError(ExecutionError):
    """Signing or broadcasting a transaction failed."""


class TransactionFailedError(ExecutionError):
    """Transaction was mined but reverted."""

    def __init__(
        self,
        reason: str,
        tx_hash: Optional[str] = None,
    ) -> None:
        message = f"Transaction reverted: {reason}"
        if tx_hash:
            message = f"Transaction {tx_hash} reverted: {reason}"
        super().__init__(message, data={"txHash": tx_hash} if tx_hash else None)
        self.reason = reason
        self.tx_hash = tx_hash


class TaskStateError(RuntimeError):
    """Raised when code tries to move a task out of a terminal state."""


__all__ = [
    "CapabilityServerError",
    "CapabilityServerUnavailableError",
    "ChainAmbiguousError",
    "ChainNotConfiguredError",
    "ConfigurationError",
    "EmptyTransactionPlanError",
    "ExecutionError",
    "GasEstimationError",
    "InsufficientBalanceError",
    "InternalError",
    "InvalidParams",
    "InvalidRequest",
    "MethodNotFound",
    "ParseError",
    "PipelineError",
    "PlanValidationError",
    "ResponseValidationError",
    "RpcUnavailableError",
    "TaskNotCancelable",
    "TaskNotFound",
    "TaskStateError",
    "TokenNotFoundError",
    "TransactionFailedError",
    "TransactionSubmitError",
    "UnsupportedOperation",
    "error_from_jsonrpc",
]
