"""Sign, send and confirm transaction plans one entry at a time."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from eth_abi import decode
from eth_abi.exceptions import DecodingError
from web3 import Web3

from defi_agent.chain_client import RPC_ERRORS, ChainClient, ChainRegistry
from defi_agent.chains import explorer_tx_url
from defi_agent.errors import (
    ConfigurationError,
    EmptyTransactionPlanError,
    ExecutionError,
    GasEstimationError,
    PipelineError,
    PlanValidationError,
    TransactionFailedError,
    TransactionSubmitError,
)
from defi_agent.schemas import TransactionPlanEntry
from defi_agent.tasks import TRANSACTION_PLAN_ARTIFACT, DataPart, Task
from defi_agent.utils.logging import get_logger

logger = get_logger(__name__)

GAS_LIMIT_BUFFER_PCT = 110
FEE_BUFFER_PCT = 105
ERROR_STRING_SELECTOR = "08c379a0"

_ERROR_STRING_RE = re.compile(rf"(?:0x)?{ERROR_STRING_SELECTOR}([0-9a-fA-F]+)")
_REASON_RE = re.compile(r"(?:reverted|reason)\s*:\s*(.+)", re.IGNORECASE)
_HEX_RE = re.compile(r"^0x(?:[0-9a-fA-F]{2})+$")

PlanInput = Union[TransactionPlanEntry, Mapping[str, Any]]


@dataclass(frozen=True)
class ExecutedTransaction:
    hash: str
    chain_id: str
    block_number: Optional[int] = None
    gas_used: Optional[int] = None

    @property
    def explorer_url(self) -> Optional[str]:
        return explorer_tx_url(self.chain_id, self.hash)

    def to_wire(self) -> Dict[str, Any]:
        return {
            "hash": self.hash,
            "chainId": self.chain_id,
            "blockNumber": self.block_number,
            "gasUsed": self.gas_used,
            "explorerUrl": self.explorer_url,
        }


def attach_executed(
    exc: PipelineError, executed: Sequence[ExecutedTransaction]
) -> PipelineError:
    """Return an :class:`ExecutionError` carrying ``executed`` ahead of its own."""
    if isinstance(exc, ExecutionError):
        exc.executed = [*executed, *exc.executed]
        return exc
    if not executed:
        return exc
    return ExecutionError(exc.message, code=exc.code, data=exc.data, executed=executed)


def _decode_hex_text(value: str) -> Optional[str]:
    if not _HEX_RE.match(value):
        return None
    try:
        text = bytes.fromhex(value[2:]).decode("utf-8")
    except UnicodeDecodeError:
        return None
    text = text.strip("\x00").strip()
    return text or None


def decode_revert_reason(payload: Optional[str]) -> str:
    """Turn provider error text or revert data into a readable reason.

    ``Error(string)`` data is ABI decoded; otherwise the text after
    ``reverted:`` or ``reason:`` is used, hex-decoded when it is ``0x`` data.
    Anything else comes back unchanged.
    """
    if not payload:
        return "unknown reason"
    text = str(payload).strip()

    match = _ERROR_STRING_RE.search(text)
    if match:
        try:
            (reason,) = decode(["string"], bytes.fromhex(match.group(1)))
            if reason:
                return reason
        except (DecodingError, ValueError):
            logger.debug("revert_string_decode_failed", payload=text[:200])

    match = _REASON_RE.search(text)
    if match:
        reason = match.group(1).strip().strip("'\"")
        decoded = _decode_hex_text(reason)
        return decoded or reason

    decoded = _decode_hex_text(text)
    return decoded or text


def _error_text(exc: BaseException) -> str:
    data = getattr(exc, "data", None)
    message = getattr(exc, "message", None) or str(exc)
    if isinstance(data, str) and data and data not in message:
        return f"{message} {data}"
    return message


def _to_int(value: Union[str, int]) -> int:
    if isinstance(value, int):
        return value
    text = str(value).strip()
    return int(text, 16) if text.lower().startswith("0x") else int(text or "0")


def _as_entry(entry: PlanInput) -> TransactionPlanEntry:
    if isinstance(entry, TransactionPlanEntry):
        return entry
    return TransactionPlanEntry.model_validate(dict(entry))


class TransactionExecutor:
    """Executes plan entries strictly in order, waiting for each receipt."""

    def __init__(self, registry: ChainRegistry) -> None:
        self.registry = registry

    async def execute_plan(self, plan: Sequence[PlanInput]) -> List[ExecutedTransaction]:
        if not plan:
            raise EmptyTransactionPlanError()
        entries = [_as_entry(entry) for entry in plan]
        executed: List[ExecutedTransaction] = []
        for index, entry in enumerate(entries):
            logger.info(
                "plan_entry_started",
                index=index,
                total=len(entries),
                chain_id=entry.chain_id,
                to=entry.to,
            )
            try:
                executed.append(await self.execute_entry(entry))
            except PipelineError as exc:
                if executed:
                    logger.warning(
                        "plan_partially_executed",
                        confirmed=len(executed),
                        total=len(entries),
                    )
                error = attach_executed(exc, executed)
                if error is exc:
                    raise
                raise error from exc
        return executed

    async def build_transaction(
        self, client: ChainClient, entry: TransactionPlanEntry
    ) -> Dict[str, Any]:
        """Fill in sender, gas, fees and nonce for one plan entry."""
        sender = client.address
        if not sender:
            raise ConfigurationError(
                "No signer configured. Set PRIVATE_KEY to execute transactions."
            )
        try:
            to = Web3.to_checksum_address(entry.to)
        except ValueError as exc:
            raise PlanValidationError(
                f"Invalid transaction target address: {entry.to}"
            ) from exc
        tx: Dict[str, Any] = {
            "from": sender,
            "to": to,
            "data": entry.data,
            "value": _to_int(entry.value),
            "chainId": _to_int(entry.chain_id),
        }

        try:
            estimate = await client.estimate_gas(tx)
        except RPC_ERRORS as exc:
            reason = decode_revert_reason(_error_text(exc))
            logger.warning("gas_estimation_failed", chain_id=entry.chain_id, reason=reason)
            raise GasEstimationError(f"Gas estimation failed: {reason}") from exc
        tx["gas"] = estimate * GAS_LIMIT_BUFFER_PCT // 100

        fees = await client.fee_data()
        if fees.is_eip1559:
            tx["maxFeePerGas"] = fees.max_fee_per_gas * FEE_BUFFER_PCT // 100
            tx["maxPriorityFeePerGas"] = (
                fees.max_priority_fee_per_gas * FEE_BUFFER_PCT // 100
            )
        else:
            tx["gasPrice"] = (fees.gas_price or 0) * FEE_BUFFER_PCT // 100

        tx["nonce"] = await client.pending_nonce(sender)
        return tx

    async def execute_entry(self, entry: PlanInput) -> ExecutedTransaction:
        entry = _as_entry(entry)
        client = self.registry.get(entry.chain_id)
        tx = await self.build_transaction(client, entry)

        try:
            tx_hash = await client.send_transaction(tx)
        except RPC_ERRORS as exc:
            reason = decode_revert_reason(_error_text(exc))
            raise TransactionSubmitError(f"Failed to send transaction: {reason}") from exc
        logger.info(
            "transaction_sent",
            chain_id=entry.chain_id,
            tx_hash=tx_hash,
            nonce=tx["nonce"],
            gas=tx["gas"],
        )

        receipt = await client.wait_for_receipt(tx_hash)
        block_number = receipt.get("blockNumber")
        if receipt.get("status") == 0:
            raw = await client.replay_call(tx, block_number)
            reason = decode_revert_reason(raw)
            logger.error(
                "transaction_reverted",
                chain_id=entry.chain_id,
                tx_hash=tx_hash,
                reason=reason,
            )
            raise TransactionFailedError(reason, tx_hash)

        gas_used = receipt.get("gasUsed")
        logger.info(
            "transaction_confirmed",
            chain_id=entry.chain_id,
            tx_hash=tx_hash,
            block_number=block_number,
            gas_used=gas_used,
        )
        return ExecutedTransaction(
            hash=tx_hash,
            chain_id=entry.chain_id,
            block_number=block_number,
            gas_used=gas_used,
        )


def extract_transaction_plan(task: Task) -> List[TransactionPlanEntry]:
    """Collect the plan entries from a task's ``transaction-plan`` artifacts."""
    plan: List[TransactionPlanEntry] = []
    for artifact in task.artifacts or []:
        if artifact.name != TRANSACTION_PLAN_ARTIFACT:
            continue
        for part in artifact.parts:
            if isinstance(part, DataPart):
                plan.extend(
                    TransactionPlanEntry.model_validate(entry)
                    for entry in part.data.get("txPlan") or []
                )
    return plan


__all__ = [
    "ExecutedTransaction",
    "FEE_BUFFER_PCT",
    "GAS_LIMIT_BUFFER_PCT",
    "TransactionExecutor",
    "attach_executed",
    "decode_revert_reason",
    "extract_transaction_plan",
]
