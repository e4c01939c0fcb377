"""Before/after hooks around tool execution.

A tool is a named async callable plus a pydantic parameter model. Hooks are
plain callables (sync or async) folded around it:

* a before hook receives ``(args, ctx)`` and returns new args, or a
  :class:`~defi_agent.tasks.Task` / :class:`~defi_agent.tasks.Message` that
  short-circuits the call;
* an after hook receives ``(result, ctx, args)`` and returns the final Task or
  Message.

``with_hooks`` converts pipeline errors into failed tasks at the stage that
raised them, so the orchestration loop always receives a Task or Message.
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass, replace
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Optional,
    Tuple,
    Type,
    Union,
)

from pydantic import BaseModel, ValidationError

from defi_agent.chain_client import ChainRegistry
from defi_agent.config import Settings
from defi_agent.errors import (
    INVALID_PARAMS,
    ChainAmbiguousError,
    ExecutionError,
    InsufficientBalanceError,
    PipelineError,
    RpcUnavailableError,
    TaskStateError,
    TokenNotFoundError,
)
from defi_agent.mcp_client import CapabilityClient
from defi_agent.plan_builder import build_transaction_plan, is_native_token
from defi_agent.schemas import TransactionResponse
from defi_agent.tasks import (
    EXECUTED_TRANSACTIONS_ARTIFACT,
    Task,
    TaskResult,
    TaskState,
    create_artifact,
    create_error_task,
    create_input_required_task,
    create_success_task,
    create_task,
    create_transaction_artifact,
    is_task_or_message,
)
from defi_agent.tokens import (
    TokenInfo,
    TokenMap,
    TokenResolution,
    find_token,
    resolve_token_pair,
)
from defi_agent.utils.formatting import format_confirmed_before_failure
from defi_agent.utils.logging import get_logger
from defi_agent.utils.units import format_units, parse_units
from defi_agent.validation import parse_tool_response

logger = get_logger(__name__)

ToolArgs = Dict[str, Any]
BeforeHook = Callable[..., Union[ToolArgs, TaskResult, Awaitable[Any]]]
AfterHook = Callable[..., Union[TaskResult, Awaitable[TaskResult]]]

MISSING_USER_ADDRESS = "User address not set. Please provide a wallet address."


class EmptyParams(BaseModel):
    """Parameter model for tools that take no arguments."""


@dataclass
class HookContext:
    """Resources shared by every hook of one orchestrator run."""

    token_map: TokenMap
    capability_client: CapabilityClient
    chains: ChainRegistry
    settings: Settings
    user_address: Optional[str] = None
    context_id: Optional[str] = None

    @property
    def default_chain_id(self) -> str:
        return self.settings.default_chain_id


@dataclass(frozen=True)
class Tool:
    name: str
    description: str
    parameters: Type[BaseModel]
    execute: Callable[[ToolArgs, HookContext], Awaitable[Any]]

    def declaration(self) -> Dict[str, Any]:
        """Provider-neutral ``{name, description, parameters}`` declaration."""
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters.model_json_schema(by_alias=True),
        }

    async def run(self, arguments: Optional[Dict[str, Any]], ctx: HookContext) -> Any:
        try:
            params = self.parameters.model_validate(arguments or {})
        except ValidationError as exc:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
                for err in exc.errors()
            )
            logger.warning("tool_arguments_invalid", tool=self.name, errors=problems)
            return create_error_task(
                f"Invalid arguments for {self.name}: {problems}", ctx.context_id
            )
        args = params.model_dump(by_alias=True, exclude_none=True)
        return await self.execute(args, ctx)


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def compose_before_hooks(*hooks: Optional[BeforeHook]) -> BeforeHook:
    """Fold hooks left to right, stopping at the first Task or Message."""
    active = [hook for hook in hooks if hook is not None]

    async def composed(args: ToolArgs, ctx: HookContext) -> Union[ToolArgs, TaskResult]:
        current = args
        for hook in active:
            outcome = await _maybe_await(hook(current, ctx))
            if is_task_or_message(outcome):
                return outcome
            current = outcome
        return current

    return composed


def with_hooks(
    tool: Tool,
    before: Optional[BeforeHook] = None,
    after: Optional[AfterHook] = None,
) -> Tool:
    """Return a copy of ``tool`` that runs ``before -> body -> after``."""

    async def execute(args: ToolArgs, ctx: HookContext) -> Any:
        try:
            if before is not None:
                outcome = await _maybe_await(before(dict(args), ctx))
                if is_task_or_message(outcome):
                    return outcome
                args = outcome
            result = await tool.execute(args, ctx)
            if after is not None:
                return await _maybe_await(after(result, ctx, args))
            return result
        except TaskStateError:
            raise
        except ChainAmbiguousError as exc:
            return create_input_required_task(exc.message, ctx.context_id)
        except PipelineError as exc:
            logger.warning(
                "tool_failed",
                tool=tool.name,
                error_type=type(exc).__name__,
                error=exc.message,
            )
            return pipeline_failure_task(exc, ctx.context_id)
        except Exception as exc:
            logger.exception("tool_crashed", tool=tool.name)
            return create_error_task(f"Error: {exc}", ctx.context_id)

    return replace(tool, execute=execute)


def pipeline_failure_task(exc: PipelineError, context_id: Optional[str]) -> Task:
    """Failed task for ``exc``, listing any transactions confirmed before it."""
    executed = exc.executed if isinstance(exc, ExecutionError) else []
    if not executed:
        return create_error_task(exc.message, context_id)
    text = f"{exc.message}\n{format_confirmed_before_failure(executed)}"
    artifact = create_artifact(
        EXECUTED_TRANSACTIONS_ARTIFACT,
        data={"transactions": [tx.to_wire() for tx in executed]},
    )
    return create_task(
        TaskState.FAILED, text, context_id=context_id, artifacts=[artifact]
    )


def _raise_unresolved(resolution: TokenResolution) -> None:
    if resolution.needs_input:
        raise ChainAmbiguousError(resolution.message)
    raise TokenNotFoundError(resolution.message)


def _with_atomic_amount(args: ToolArgs, token: TokenInfo, amount_key: str) -> ToolArgs:
    amount = args.get(amount_key)
    if amount is None:
        return args
    try:
        args["atomic_amount"] = parse_units(str(amount), token.decimals)
    except ValueError:
        logger.debug("amount_not_parsed", amount=str(amount), token=token.symbol)
    return args


def require_user_address(args: ToolArgs, ctx: HookContext) -> Union[ToolArgs, Task]:
    if not ctx.user_address:
        return create_error_task(MISSING_USER_ADDRESS, ctx.context_id)
    return args


def require_signer(args: ToolArgs, ctx: HookContext) -> Union[ToolArgs, Task]:
    if ctx.chains.account is None:
        return create_error_task(
            "No signer configured. Set PRIVATE_KEY to execute transactions.",
            ctx.context_id,
        )
    return args


def token_resolution_hook(
    token_key: str = "tokenName",
    chain_key: str = "chain",
    amount_key: str = "amount",
) -> BeforeHook:
    """Resolve a single token symbol into ``args['token_info']``."""

    def hook(args: ToolArgs, ctx: HookContext) -> ToolArgs:
        resolution = find_token(ctx.token_map, args.get(token_key, ""), args.get(chain_key))
        if not resolution.found:
            _raise_unresolved(resolution)
        args["token_info"] = resolution.token
        return _with_atomic_amount(args, resolution.token, amount_key)

    return hook


def token_pair_resolution_hook(args: ToolArgs, ctx: HookContext) -> ToolArgs:
    """Resolve both legs of a swap into ``from_token_info`` / ``to_token_info``."""
    pair = resolve_token_pair(
        ctx.token_map,
        args.get("fromToken", ""),
        args.get("toToken", ""),
        args.get("fromChain"),
        args.get("toChain"),
        default_chain_id=ctx.default_chain_id,
    )
    if not pair.found:
        _raise_unresolved(pair.failure)
    args["from_token_info"] = pair.from_token
    args["to_token_info"] = pair.to_token
    return _with_atomic_amount(args, pair.from_token, "amount")


async def check_balance(
    ctx: HookContext, token: TokenInfo, amount: str, owner: str
) -> int:
    """Return the balance of ``owner``, raising when it is below ``amount``."""
    symbol = (token.symbol or "token").upper()
    try:
        required = parse_units(str(amount), token.decimals)
    except ValueError as exc:
        raise PipelineError(
            f"Invalid amount format for balance check: {amount}", code=INVALID_PARAMS
        ) from exc

    client = ctx.chains.get(token.chain_id)
    try:
        if is_native_token(token.address):
            balance = await client.native_balance(owner)
        else:
            balance = await client.balance_of(token.address, owner)
    except RpcUnavailableError as exc:
        raise RpcUnavailableError(
            f"Could not verify your {symbol} balance due to a network error: {exc}"
        ) from exc

    logger.debug(
        "balance_checked", token=symbol, balance=str(balance), required=str(required)
    )
    if balance < required:
        formatted = format_units(balance, token.decimals)
        raise InsufficientBalanceError(
            f"Insufficient {symbol} balance. You need {amount} but only have {formatted}."
        )
    return balance


async def balance_check_hook(args: ToolArgs, ctx: HookContext) -> Union[ToolArgs, Task]:
    """Fail early when the wallet cannot cover the amount being spent."""
    if not ctx.user_address:
        return create_error_task(MISSING_USER_ADDRESS, ctx.context_id)
    token = args.get("from_token_info") or args.get("token_info")
    if token is None:
        raise PipelineError("Balance check requires a resolved token.")
    await check_balance(ctx, token, args.get("amount", ""), ctx.user_address)
    return args


PreviewBuilder = Callable[[Any, ToolArgs], Tuple[Dict[str, Any], str]]


def transaction_response_hook(
    schema: Type[TransactionResponse],
    preview: PreviewBuilder,
    approve: bool = True,
) -> AfterHook:
    """Validate a plan-bearing response and wrap it in a completed task.

    With ``approve`` the resolved source token is checked against the first
    transaction's target and an approval is prepended when needed.
    """

    async def hook(result: Any, ctx: HookContext, args: ToolArgs) -> Task:
        response = parse_tool_response(result, schema)
        if response.error is not None:
            return create_error_task(response.error.message, ctx.context_id)

        token: Optional[TokenInfo] = None
        chain_client = None
        if approve:
            token = args.get("from_token_info") or args.get("token_info")
            if token is not None:
                chain_client = ctx.chains.get(token.chain_id)

        plan = await build_transaction_plan(
            response.transactions,
            token,
            args.get("atomic_amount"),
            ctx.user_address,
            chain_client,
        )
        tx_preview, text = preview(response, args)
        logger.info(
            "transaction_plan_built",
            schema=schema.__name__,
            entries=len(plan),
            chain_id=response.chain_id,
        )
        return create_success_task(
            text,
            [create_transaction_artifact(tx_preview, plan)],
            ctx.context_id,
        )

    return hook


__all__ = [
    "AfterHook",
    "BeforeHook",
    "EmptyParams",
    "HookContext",
    "MISSING_USER_ADDRESS",
    "Tool",
    "ToolArgs",
    "balance_check_hook",
    "check_balance",
    "compose_before_hooks",
    "pipeline_failure_task",
    "require_signer",
    "require_user_address",
    "token_pair_resolution_hook",
    "token_resolution_hook",
    "transaction_response_hook",
    "with_hooks",
]
