"""Tests for the CLI session loop and plan execution."""

import io
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from conftest import USER, tx_entry
from pydantic import ValidationError

from defi_agent.cli import build_parser, execute_plan, load_account, run_interactive
from defi_agent.cli_output import CLIOutput
from defi_agent.config import Settings
from defi_agent.errors import TransactionFailedError
from defi_agent.executor import ExecutedTransaction
from defi_agent.schemas import TransactionPlanEntry
from defi_agent.tasks import create_success_task, create_transaction_artifact

PLAN = [TransactionPlanEntry.model_validate(tx_entry())]


def _runtime(can_sign=True, tasks=()):
    orchestrator = MagicMock()
    orchestrator.run = AsyncMock(side_effect=list(tasks))
    executor = MagicMock()
    executor.execute_plan = AsyncMock(
        return_value=[ExecutedTransaction("0xabc", "42161", 1, 21000)]
    )
    return SimpleNamespace(orchestrator=orchestrator, executor=executor, can_sign=can_sign)


def _lines(*lines):
    queue = list(lines)

    def read_line(prompt):
        if not queue:
            raise EOFError
        return queue.pop(0)

    return read_line


class TestExecutePlan:
    @pytest.mark.asyncio
    async def test_requires_signer(self, capsys):
        runtime = _runtime(can_sign=False)
        assert await execute_plan(runtime, PLAN, CLIOutput(), lambda q: True) is False
        runtime.executor.execute_plan.assert_not_awaited()
        assert "PRIVATE_KEY" in capsys.readouterr().err

    @pytest.mark.asyncio
    async def test_declined_confirmation(self):
        runtime = _runtime()
        stream = io.StringIO()
        ok = await execute_plan(runtime, PLAN, CLIOutput(stream=stream), lambda q: False)
        assert ok is False
        runtime.executor.execute_plan.assert_not_awaited()
        assert "Execution skipped." in stream.getvalue()

    @pytest.mark.asyncio
    async def test_confirmed_plan_is_sent(self):
        runtime = _runtime()
        questions = []
        stream = io.StringIO()

        def confirm(question):
            questions.append(question)
            return True

        assert await execute_plan(runtime, PLAN, CLIOutput(stream=stream), confirm)
        runtime.executor.execute_plan.assert_awaited_once_with(PLAN)
        assert questions == ["Sign and send 1 transaction(s)?"]
        assert "  1. 0xabc (block 1)" in stream.getvalue()

    @pytest.mark.asyncio
    async def test_failure_is_reported(self, capsys):
        runtime = _runtime()
        runtime.executor.execute_plan.side_effect = TransactionFailedError("STF", "0xdead")
        ok = await execute_plan(runtime, PLAN, CLIOutput(stream=io.StringIO()), lambda q: True)
        assert ok is False
        assert "STF" in capsys.readouterr().err

    @pytest.mark.asyncio
    async def test_partial_failure_lists_confirmed_transactions(self, capsys):
        runtime = _runtime()
        error = TransactionFailedError("STF", "0xdead")
        error.executed = [ExecutedTransaction("0xapprove", "42161", 3, 46000)]
        runtime.executor.execute_plan.side_effect = error
        stream = io.StringIO()

        ok = await execute_plan(runtime, PLAN, CLIOutput(stream=stream), lambda q: True)

        assert ok is False
        err = capsys.readouterr().err
        assert "Transaction 0xdead reverted: STF" in err
        assert "confirmed before the failure" in err
        assert "  1. 0xapprove (block 3)" in stream.getvalue()


class TestRunInteractive:
    @pytest.mark.asyncio
    async def test_execute_command_sends_last_plan(self):
        task = create_success_task(
            "Plan ready.", [create_transaction_artifact({}, [tx_entry()])]
        )
        runtime = _runtime(tasks=[task])
        stream = io.StringIO()

        await run_interactive(
            runtime,
            CLIOutput(stream=stream),
            confirm=lambda q: True,
            read_line=_lines("swap 1 USDC", "/execute", "/execute", "/quit"),
        )

        runtime.executor.execute_plan.assert_awaited_once()
        assert "Use /execute to sign and send this plan." in stream.getvalue()

    @pytest.mark.asyncio
    async def test_clear_starts_new_context(self):
        runtime = _runtime(
            tasks=[create_success_task("one"), create_success_task("two")]
        )
        await run_interactive(
            runtime,
            CLIOutput(stream=io.StringIO()),
            read_line=_lines("first", "/clear", "second"),
        )

        first_ctx = runtime.orchestrator.run.await_args_list[0].args[1]
        second_ctx = runtime.orchestrator.run.await_args_list[1].args[1]
        assert first_ctx != second_ctx
        runtime.orchestrator.clear_history.assert_called_once_with(first_ctx)

    @pytest.mark.asyncio
    async def test_unknown_command(self, capsys):
        runtime = _runtime()
        await run_interactive(
            runtime, CLIOutput(stream=io.StringIO()), read_line=_lines("/nope")
        )
        assert "Unknown command: /nope" in capsys.readouterr().err
        runtime.orchestrator.run.assert_not_awaited()


class TestSetup:
    def test_parser(self):
        args = build_parser().parse_args(["--execute", "-o", "json", "swap 1 USDC"])
        assert args.execute is True
        assert args.output == "json"
        assert args.query == "swap 1 USDC"

    def test_no_private_key(self):
        assert load_account(Settings(_env_file=None, PRIVATE_KEY=None)) is None

    def test_invalid_private_key(self):
        with pytest.raises(ValidationError, match="PRIVATE_KEY"):
            Settings(_env_file=None, PRIVATE_KEY="0x1234")

    def test_account_address(self):
        key = "0x" + "11" * 32
        account = load_account(Settings(_env_file=None, PRIVATE_KEY=key))
        assert account.address.startswith("0x")
        assert account.address != USER
