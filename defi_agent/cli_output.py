"""CLI output formatting for terminal display.

Provides formatters for plain text and JSON output of tasks, transaction
plans and executed transactions.
"""

from __future__ import annotations

import json
import sys
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from defi_agent.executor import ExecutedTransaction
from defi_agent.tasks import TRANSACTION_PLAN_ARTIFACT, DataPart, Task, TaskState

STATE_LABELS = {
    TaskState.COMPLETED: "✅",
    TaskState.INPUT_REQUIRED: "❓",
    TaskState.FAILED: "❌",
    TaskState.CANCELED: "🚫",
}


class OutputFormat(Enum):
    """Supported output formats."""

    TEXT = "text"
    JSON = "json"


def plan_data(task: Task) -> Optional[Dict[str, Any]]:
    """The ``{txPreview, txPlan}`` payload of a task, if it carries one."""
    for artifact in task.artifacts or []:
        if artifact.name != TRANSACTION_PLAN_ARTIFACT:
            continue
        for part in artifact.parts:
            if isinstance(part, DataPart):
                return part.data
    return None


def _shorten(value: str, keep: int = 18) -> str:
    if len(value) <= keep + 3:
        return value
    return f"{value[:keep]}... ({len(value)} chars)"


def format_plan_plain(data: Dict[str, Any]) -> str:
    lines: List[str] = []
    preview = data.get("txPreview") or {}
    if preview:
        lines.append("--- Transaction Preview ---")
        for key, value in preview.items():
            lines.append(f"  {key}: {value}")

    plan = data.get("txPlan") or []
    lines.append(f"--- Transaction Plan ({len(plan)} transaction(s)) ---")
    for index, entry in enumerate(plan, 1):
        lines.append(
            f"  {index}. to={entry.get('to')} value={entry.get('value')} "
            f"chainId={entry.get('chainId')}"
        )
        lines.append(f"     data={_shorten(str(entry.get('data', '')))}")
    return "\n".join(lines)


def format_executed_plain(executed: Sequence[ExecutedTransaction]) -> str:
    lines = [f"Executed {len(executed)} transaction(s):"]
    for index, tx in enumerate(executed, 1):
        line = f"  {index}. {tx.hash}"
        if tx.block_number is not None:
            line += f" (block {tx.block_number})"
        lines.append(line)
        if tx.explorer_url:
            lines.append(f"     🔗 {tx.explorer_url}")
    return "\n".join(lines)


class CLIOutput:
    """Unified output handler for CLI."""

    def __init__(
        self,
        format: OutputFormat = OutputFormat.TEXT,
        verbose: bool = False,
        stream: Any = None,
    ) -> None:
        self.format = format
        self.verbose = verbose
        self.stream = stream or sys.stdout

    def task(self, task: Task) -> None:
        """Output the final state of a task."""
        if self.format == OutputFormat.JSON:
            exclude = None if self.verbose else {"history"}
            payload = task.model_dump(
                by_alias=True, exclude_none=True, exclude=exclude, mode="json"
            )
            print(json.dumps(payload, indent=2), file=self.stream)
            return

        label = STATE_LABELS.get(task.state, "⏳")
        print(f"{label} {task.text or task.state.value}", file=self.stream)

        data = plan_data(task)
        if data is not None:
            print("", file=self.stream)
            print(format_plan_plain(data), file=self.stream)

        if self.verbose and task.history:
            print("\n--- History ---", file=self.stream)
            for entry in task.history:
                content = entry.get("content")
                if not isinstance(content, str):
                    content = json.dumps(content)
                name = f" {entry['name']}" if entry.get("name") else ""
                print(f"  [{entry.get('role')}{name}] {content}", file=self.stream)

    def executed(self, executed: Sequence[ExecutedTransaction]) -> None:
        """Output the transactions sent for a plan."""
        if self.format == OutputFormat.JSON:
            payload = [tx.to_wire() for tx in executed]
            print(json.dumps({"executed": payload}, indent=2), file=self.stream)
            return
        print(format_executed_plain(executed), file=self.stream)

    def status(self, message: str) -> None:
        """Output a status message."""
        if self.format == OutputFormat.JSON:
            return  # Suppress status in JSON mode
        print(f"⏳ {message}", file=self.stream)

    def info(self, message: str) -> None:
        """Output an info message."""
        if self.format == OutputFormat.JSON:
            return
        print(f"ℹ️  {message}", file=self.stream)

    def warning(self, message: str) -> None:
        """Output a warning message."""
        if self.format == OutputFormat.JSON:
            print(json.dumps({"warning": message}), file=sys.stderr)
            return
        print(f"⚠️  {message}", file=sys.stderr)

    def error(self, message: str) -> None:
        """Output an error message."""
        if self.format == OutputFormat.JSON:
            print(json.dumps({"error": message}), file=sys.stderr)
            return
        print(f"❌ {message}", file=sys.stderr)

    def debug(self, message: str, data: Any = None) -> None:
        """Output debug information (only in verbose mode)."""
        if not self.verbose:
            return

        if self.format == OutputFormat.JSON:
            output = {"debug": message}
            if data is not None:
                output["data"] = data
            print(json.dumps(output, default=str), file=sys.stderr)
            return

        print(f"🔍 {message}", file=sys.stderr)
        if data is not None:
            print(f"   {data}", file=sys.stderr)


__all__ = [
    "CLIOutput",
    "OutputFormat",
    "format_executed_plain",
    "format_plan_plain",
    "plan_data",
]
