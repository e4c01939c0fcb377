"""Multi-turn tool-calling loop that turns one user message into a Task."""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import replace
from typing import Any, Dict, List, Optional, Protocol, Sequence

from defi_agent.errors import TaskNotCancelable, TaskNotFound
from defi_agent.hooks import HookContext, Tool
from defi_agent.llm import LanguageModel, ToolCall
from defi_agent.tasks import Message, Task, TaskState, new_id
from defi_agent.utils.logging import bind_context, clear_context, get_logger

logger = get_logger(__name__)

DEFAULT_MAX_STEPS = 5
FINISHED_TASK_LIMIT = 100


class TaskStore(Protocol):
    async def save_task(self, task: Task) -> None:
        ...


def tool_content(result: Any) -> Any:
    """Shape a tool result for the model and the conversation history."""
    if isinstance(result, Task):
        return result.model_dump(
            by_alias=True, exclude_none=True, exclude={"history"}, mode="json"
        )
    if isinstance(result, Message):
        return result.model_dump(by_alias=True, exclude_none=True, mode="json")
    if isinstance(result, dict):
        return result
    return {"result": result}


class Orchestrator:
    """Runs the model/tool loop for one conversation turn at a time.

    History is kept per context id. It is cleared once a task reaches a
    terminal state and kept while a task waits for user input.

    Only tasks that can still change are held in memory. Finished tasks are
    handed to the store and remembered by id and state for
    ``FINISHED_TASK_LIMIT`` entries, so late cancels get a precise error.
    """

    def __init__(
        self,
        model: LanguageModel,
        tools: Sequence[Tool],
        context: HookContext,
        max_steps: int = DEFAULT_MAX_STEPS,
        store: Optional[TaskStore] = None,
    ) -> None:
        self.model = model
        self.tools: Dict[str, Tool] = {tool.name: tool for tool in tools}
        self.context = context
        self.max_steps = max_steps
        self.store = store
        self._histories: Dict[str, List[Dict[str, Any]]] = {}
        self._tasks: Dict[str, Task] = {}
        self._waiting: Dict[str, str] = {}
        self._finished: OrderedDict[str, TaskState] = OrderedDict()

    @property
    def declarations(self) -> List[Dict[str, Any]]:
        return [tool.declaration() for tool in self.tools.values()]

    def history(self, context_id: str) -> List[Dict[str, Any]]:
        return list(self._histories.get(context_id, []))

    def clear_history(self, context_id: str) -> None:
        self._histories.pop(context_id, None)
        self._drop_waiting(context_id)

    def _drop_waiting(self, context_id: str) -> None:
        task_id = self._waiting.pop(context_id, None)
        if task_id is not None:
            self._tasks.pop(task_id, None)

    def get_task(self, task_id: str) -> Task:
        task = self._tasks.get(task_id)
        if task is None:
            raise TaskNotFound(f"Task {task_id} not found")
        return task

    def cancel(self, task_id: str) -> Task:
        finished = self._finished.get(task_id)
        if finished is not None:
            raise TaskNotCancelable(
                f"Task {task_id} is already {finished.value} and cannot be canceled"
            )
        task = self.get_task(task_id)
        task.transition(TaskState.CANCELED, "Task canceled.")
        self._release(task)
        self._histories.pop(task.context_id, None)
        logger.info("task_canceled", task_id=task_id)
        return task

    async def run(self, message: str, context_id: Optional[str] = None) -> Task:
        context_id = context_id or new_id("ctx")
        task = Task(context_id=context_id)
        self._drop_waiting(context_id)
        self._tasks[task.id] = task
        bind_context(task_id=task.id, context_id=context_id)
        try:
            await self._run(task, message, context_id)
        finally:
            self._release(task)
            clear_context()
        return task

    async def _run(self, task: Task, message: str, context_id: str) -> None:
        history = self._histories.setdefault(context_id, [])
        history.append({"role": "user", "content": message})
        ctx = replace(self.context, context_id=context_id)

        try:
            task.transition(TaskState.WORKING)
            await self._loop(task, history, ctx)
        except Exception as exc:
            logger.exception("orchestrator_failed")
            if not task.is_terminal:
                task.transition(TaskState.FAILED, f"Error: {exc}")

        task.history = list(history)
        if task.is_terminal:
            self._histories.pop(context_id, None)
        await self._persist(task)
        logger.info("orchestrator_finished", state=task.state.value)

    def _release(self, task: Task) -> None:
        """Drop ``task`` from memory once it is terminal."""
        if not task.is_terminal:
            self._waiting[task.context_id] = task.id
            return
        self._tasks.pop(task.id, None)
        if self._waiting.get(task.context_id) == task.id:
            del self._waiting[task.context_id]
        self._finished[task.id] = task.state
        while len(self._finished) > FINISHED_TASK_LIMIT:
            self._finished.popitem(last=False)

    async def _loop(
        self, task: Task, history: List[Dict[str, Any]], ctx: HookContext
    ) -> None:
        last_tool_task: Optional[Task] = None

        for step in range(1, self.max_steps + 1):
            if task.is_terminal:
                return
            turn = await self.model.generate(history, self.declarations)
            logger.info(
                "orchestrator_step",
                step=step,
                tool_calls=[call.name for call in turn.tool_calls],
            )

            if not turn.tool_calls:
                history.append({"role": "model", "content": turn.text})
                if last_tool_task is not None:
                    self._adopt(task, last_tool_task)
                else:
                    task.transition(TaskState.COMPLETED, turn.text)
                return

            history.append(
                {
                    "role": "model",
                    "content": turn.text,
                    "tool_calls": [
                        {"name": call.name, "arguments": call.arguments}
                        for call in turn.tool_calls
                    ],
                }
            )
            for call in turn.tool_calls:
                result = await self._call_tool(call, ctx)
                history.append(
                    {"role": "tool", "name": call.name, "content": tool_content(result)}
                )
                if isinstance(result, Task):
                    last_tool_task = result
                    if result.state is TaskState.INPUT_REQUIRED:
                        self._adopt(task, result)
                        return

        if last_tool_task is not None:
            self._adopt(task, last_tool_task)
        else:
            task.transition(
                TaskState.FAILED,
                f"Reached the maximum of {self.max_steps} steps without a final answer.",
            )

    async def _call_tool(self, call: ToolCall, ctx: HookContext) -> Any:
        tool = self.tools.get(call.name)
        if tool is None:
            logger.warning("unknown_tool", tool=call.name)
            return {"error": f"Unknown tool: {call.name}"}
        logger.info("tool_call", tool=call.name, arguments=call.arguments)
        return await tool.run(call.arguments, ctx)

    @staticmethod
    def _adopt(task: Task, source: Task) -> None:
        task.transition(source.state, source.status.message, source.artifacts)

    async def _persist(self, task: Task) -> None:
        if self.store is None:
            return
        await self.store.save_task(task)


__all__ = [
    "DEFAULT_MAX_STEPS",
    "FINISHED_TASK_LIMIT",
    "Orchestrator",
    "TaskStore",
    "tool_content",
]
