"""Close a concentrated-liquidity position: decrease -> collect -> burn.

Every mutating step is gated on an on-chain read of the position, and the
burn only happens once the position is confirmed empty.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

from defi_agent.abis import encode_burn, encode_collect, encode_decrease_liquidity
from defi_agent.chain_client import ChainClient, PositionSnapshot
from defi_agent.errors import PipelineError
from defi_agent.executor import ExecutedTransaction, TransactionExecutor, attach_executed
from defi_agent.schemas import TransactionPlanEntry
from defi_agent.utils.logging import get_logger
from defi_agent.utils.units import MAX_UINT128

logger = get_logger(__name__)

DEADLINE_SECONDS = 600

ALREADY_EMPTY = "Position already empty"
STILL_HAS_VALUE = "Position still has value, skipping burn"
CLOSED = "Position withdrawn and burned"


class PositionState(str, Enum):
    EMPTY = "EMPTY"
    HAS_LIQUIDITY = "HAS_LIQUIDITY"
    COLLECTING = "COLLECTING"
    BURNABLE = "BURNABLE"
    DONE = "DONE"


@dataclass
class WithdrawalResult:
    transactions: List[ExecutedTransaction] = field(default_factory=list)
    burned: bool = False
    message: str = ""
    states: List[PositionState] = field(default_factory=list)

    @property
    def last_hash(self) -> Optional[str]:
        return self.transactions[-1].hash if self.transactions else None


def initial_state(snapshot: PositionSnapshot) -> PositionState:
    if snapshot.is_empty:
        return PositionState.EMPTY
    if snapshot.liquidity > 0:
        return PositionState.HAS_LIQUIDITY
    return PositionState.COLLECTING


def state_after_collect(snapshot: PositionSnapshot) -> PositionState:
    return PositionState.BURNABLE if snapshot.is_empty else PositionState.DONE


class PositionMutator:
    """Drives one position through the withdrawal state machine."""

    def __init__(
        self,
        executor: TransactionExecutor,
        chain_client: ChainClient,
        manager_address: str,
        recipient: str,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.executor = executor
        self.chain_client = chain_client
        self.manager_address = manager_address
        self.recipient = recipient
        self.clock = clock

    def _entry(self, data: str) -> TransactionPlanEntry:
        return TransactionPlanEntry(
            to=self.manager_address,
            data=data,
            value="0",
            chain_id=self.chain_client.chain_id,
        )

    async def read_position(self, token_id: int) -> PositionSnapshot:
        return await self.chain_client.position(self.manager_address, token_id)

    async def decrease_liquidity(
        self, token_id: int, snapshot: PositionSnapshot, result: WithdrawalResult
    ) -> PositionState:
        deadline = int(self.clock()) + DEADLINE_SECONDS
        data = encode_decrease_liquidity(token_id, snapshot.liquidity, 0, 0, deadline)
        result.transactions.append(await self.executor.execute_entry(self._entry(data)))
        return PositionState.COLLECTING

    async def collect(self, token_id: int, result: WithdrawalResult) -> PositionState:
        data = encode_collect(token_id, self.recipient, MAX_UINT128, MAX_UINT128)
        result.transactions.append(await self.executor.execute_entry(self._entry(data)))
        after = await self.read_position(token_id)
        next_state = state_after_collect(after)
        if next_state is PositionState.DONE:
            result.message = STILL_HAS_VALUE
            logger.info(
                "position_burn_skipped",
                token_id=token_id,
                liquidity=str(after.liquidity),
                tokens_owed0=str(after.tokens_owed0),
                tokens_owed1=str(after.tokens_owed1),
            )
        return next_state

    async def burn(self, token_id: int, result: WithdrawalResult) -> PositionState:
        data = encode_burn(token_id)
        result.transactions.append(await self.executor.execute_entry(self._entry(data)))
        result.burned = True
        result.message = CLOSED
        return PositionState.DONE

    async def withdraw(self, token_id: int) -> WithdrawalResult:
        token_id = int(token_id)
        result = WithdrawalResult()
        snapshot = await self.read_position(token_id)
        try:
            await self._advance(token_id, snapshot, result)
        except PipelineError as exc:
            error = attach_executed(exc, result.transactions)
            logger.warning(
                "position_withdraw_failed",
                token_id=token_id,
                confirmed=len(result.transactions),
                error=exc.message,
            )
            if error is exc:
                raise
            raise error from exc
        return result

    async def _advance(
        self, token_id: int, snapshot: PositionSnapshot, result: WithdrawalResult
    ) -> None:
        state = initial_state(snapshot)
        while True:
            result.states.append(state)
            logger.info("position_state", token_id=token_id, state=state.value)
            if state is PositionState.DONE:
                break
            if state is PositionState.EMPTY:
                result.message = ALREADY_EMPTY
                state = PositionState.DONE
            elif state is PositionState.HAS_LIQUIDITY:
                state = await self.decrease_liquidity(token_id, snapshot, result)
            elif state is PositionState.COLLECTING:
                state = await self.collect(token_id, result)
            elif state is PositionState.BURNABLE:
                state = await self.burn(token_id, result)


__all__ = [
    "ALREADY_EMPTY",
    "PositionMutator",
    "PositionState",
    "STILL_HAS_VALUE",
    "WithdrawalResult",
    "initial_state",
    "state_after_collect",
]
