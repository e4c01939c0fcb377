"""CLI interface for the DeFi MCP agent.

Usage:
    defi-agent "swap 100 USDC to WETH"
    defi-agent --interactive
    defi-agent --output json "show my lending positions"
    defi-agent --execute "supply 50 USDC"
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from dataclasses import dataclass
from typing import Callable, List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from eth_account import Account
from eth_account.signers.local import LocalAccount

from defi_agent.chain_client import ChainRegistry
from defi_agent.cli_output import CLIOutput, OutputFormat
from defi_agent.config import Settings, load_settings
from defi_agent.errors import ConfigurationError, ExecutionError, PipelineError
from defi_agent.executor import TransactionExecutor, extract_transaction_plan
from defi_agent.hooks import HookContext
from defi_agent.jobs.cleanup import CleanupService
from defi_agent.llm import GeminiModel
from defi_agent.mcp_client import CapabilityClient, create_capability_client
from defi_agent.orchestrator import Orchestrator
from defi_agent.schemas import TransactionPlanEntry
from defi_agent.store.db import Database
from defi_agent.store.repository import TaskStore
from defi_agent.tasks import Task, TaskState, new_id
from defi_agent.token_map import load_token_map
from defi_agent.tools import build_tools
from defi_agent.utils.logging import configure_logging, get_logger

logger = get_logger(__name__)

HELP_TEXT = "Commands: /quit, /clear, /help, /execute"

Confirm = Callable[[str], bool]


def load_account(settings: Settings) -> Optional[LocalAccount]:
    """Signer from ``PRIVATE_KEY``, if configured."""
    if not settings.private_key:
        return None
    try:
        return Account.from_key(settings.private_key)
    except ValueError as exc:
        raise ConfigurationError("PRIVATE_KEY is not a valid private key") from exc


def resolve_user_address(
    settings: Settings, account: Optional[LocalAccount]
) -> Optional[str]:
    """``USER_ADDRESS`` wins; otherwise the signer's address."""
    if settings.user_address:
        return settings.user_address
    return account.address if account else None


def prompt_confirm(question: str) -> bool:
    try:
        answer = input(f"{question} [y/N] ").strip().lower()
    except EOFError:
        return False
    return answer in ("y", "yes")


@dataclass
class Runtime:
    """Long-lived resources of one CLI session."""

    client: CapabilityClient
    orchestrator: Orchestrator
    executor: TransactionExecutor
    chains: ChainRegistry
    db: Database
    scheduler: AsyncIOScheduler

    @property
    def can_sign(self) -> bool:
        return self.chains.account is not None

    async def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        await self.client.stop()
        await self.db.dispose()


async def build_runtime(settings: Settings, output: CLIOutput) -> Runtime:
    """Start the capability server, load tokens and wire the orchestrator."""
    if not settings.gemini_api_key:
        raise ConfigurationError("GEMINI_API_KEY is required")

    account = load_account(settings)
    chains = ChainRegistry.from_settings(settings, account)

    client = create_capability_client(settings)
    output.status("Starting capability server...")
    await client.start()

    try:
        output.status("Loading token map...")
        token_map = await load_token_map(
            client,
            settings.capability_types,
            cache_path=settings.token_cache_path,
            use_cache=settings.agent_cache_tokens,
        )
    except PipelineError:
        await client.stop()
        raise
    output.debug("Token map loaded", {"symbols": sorted(token_map)})

    db = Database(settings.database_url)
    db.connect()
    await db.init_models()

    scheduler = AsyncIOScheduler()
    CleanupService(db, scheduler, retention_hours=settings.task_retention_hours).start()
    scheduler.start()

    context = HookContext(
        token_map=token_map,
        capability_client=client,
        chains=chains,
        settings=settings,
        user_address=resolve_user_address(settings, account),
    )
    orchestrator = Orchestrator(
        GeminiModel(settings.gemini_api_key, settings.gemini_model),
        build_tools(include_signing=account is not None),
        context,
        max_steps=settings.max_steps,
        store=TaskStore(db),
    )
    return Runtime(
        client=client,
        orchestrator=orchestrator,
        executor=TransactionExecutor(chains),
        chains=chains,
        db=db,
        scheduler=scheduler,
    )


async def execute_plan(
    runtime: Runtime,
    plan: List[TransactionPlanEntry],
    output: CLIOutput,
    confirm: Confirm = prompt_confirm,
) -> bool:
    """Ask for confirmation, then sign and send the plan in order."""
    if not plan:
        output.warning("No transaction plan to execute.")
        return False
    if not runtime.can_sign:
        output.warning("No signer configured. Set PRIVATE_KEY to execute plans.")
        return False
    if not confirm(f"Sign and send {len(plan)} transaction(s)?"):
        output.info("Execution skipped.")
        return False

    output.status("Executing transaction plan...")
    try:
        executed = await runtime.executor.execute_plan(plan)
    except PipelineError as exc:
        output.error(exc.message)
        if isinstance(exc, ExecutionError) and exc.executed:
            output.warning("Some transactions were confirmed before the failure.")
            output.executed(exc.executed)
        return False
    output.executed(executed)
    return True


async def run_single_query(
    runtime: Runtime,
    query: str,
    output: CLIOutput,
    execute: bool = False,
    confirm: Confirm = prompt_confirm,
) -> Task:
    """Execute a single query and display the result."""
    output.status(f"Processing: {query}")
    task = await runtime.orchestrator.run(query)
    output.task(task)
    plan = extract_transaction_plan(task)
    if execute and plan:
        await execute_plan(runtime, plan, output, confirm)
    return task


async def run_interactive(
    runtime: Runtime,
    output: CLIOutput,
    execute: bool = False,
    confirm: Confirm = prompt_confirm,
    read_line: Callable[[str], str] = input,
) -> None:
    """Run interactive REPL session."""
    output.info("DeFi MCP Agent CLI - Interactive Mode")
    output.info("Type your requests, or use /quit to exit, /clear to reset context")
    output.info("-" * 50)

    context_id = new_id("ctx")
    last_plan: List[TransactionPlanEntry] = []

    while True:
        try:
            query = read_line("\n> ").strip()
        except (EOFError, KeyboardInterrupt):
            output.info("\nGoodbye!")
            break

        if not query:
            continue

        if query.startswith("/"):
            cmd = query.lower()
            if cmd in ("/quit", "/exit", "/q"):
                output.info("Goodbye!")
                break
            elif cmd in ("/clear", "/reset"):
                runtime.orchestrator.clear_history(context_id)
                context_id = new_id("ctx")
                last_plan = []
                output.info("Context cleared.")
            elif cmd in ("/help", "/h"):
                output.info(HELP_TEXT)
            elif cmd == "/execute":
                if await execute_plan(runtime, last_plan, output, confirm):
                    last_plan = []
            else:
                output.warning(f"Unknown command: {query}")
            continue

        task = await runtime.orchestrator.run(query, context_id)
        output.task(task)
        plan = extract_transaction_plan(task)
        if plan:
            last_plan = plan
            if execute:
                if await execute_plan(runtime, plan, output, confirm):
                    last_plan = []
            elif runtime.can_sign:
                output.info("Use /execute to sign and send this plan.")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="DeFi MCP Agent CLI - turn instructions into transaction plans",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  defi-agent "swap 100 USDC to WETH"
  defi-agent --interactive
  defi-agent --output json "show my liquidity positions"
  defi-agent --execute "repay 20 USDC"
        """,
    )
    parser.add_argument(
        "query",
        nargs="?",
        help="Natural language request (e.g., 'swap 1 WETH to USDC')",
    )
    parser.add_argument(
        "-i",
        "--interactive",
        action="store_true",
        help="Start interactive REPL mode",
    )
    parser.add_argument(
        "-o",
        "--output",
        choices=[f.value for f in OutputFormat],
        default="text",
        help="Output format (default: text)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Show debug information",
    )
    parser.add_argument(
        "--stdin",
        action="store_true",
        help="Read query from stdin",
    )
    parser.add_argument(
        "--execute",
        action="store_true",
        help="Offer to sign and send returned plans (requires PRIVATE_KEY)",
    )
    return parser


async def main(argv: Optional[List[str]] = None) -> int:
    """CLI entrypoint."""
    parser = build_parser()
    args = parser.parse_args(argv)

    output = CLIOutput(format=OutputFormat(args.output), verbose=args.verbose)

    if not args.interactive and not args.query and not args.stdin:
        parser.print_help()
        return 1

    query: Optional[str] = args.query
    if args.stdin:
        query = sys.stdin.read().strip()
        if not query:
            output.error("No query provided via stdin")
            return 1

    try:
        settings = load_settings()
    except RuntimeError as exc:
        output.error(f"Failed to load settings: {exc}")
        output.info("Ensure .env file exists with GEMINI_API_KEY set")
        return 1

    configure_logging(
        "DEBUG" if args.verbose else settings.log_level, log_file=settings.log_file
    )

    try:
        runtime = await build_runtime(settings, output)
    except PipelineError as exc:
        output.error(f"Startup failed: {exc.message}")
        return 1

    try:
        if args.interactive:
            await run_interactive(runtime, output, execute=args.execute)
        elif query:
            task = await run_single_query(runtime, query, output, execute=args.execute)
            return 2 if task.state is TaskState.FAILED else 0
    except KeyboardInterrupt:
        output.info("\nInterrupted")
    finally:
        output.status("Shutting down...")
        await runtime.shutdown()
    return 0


def cli_main() -> None:
    """Synchronous wrapper for CLI entry."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli_main()
