"""Task, Message and Artifact models plus the factories used by every stage.

The wire shape follows the A2A task schema (camelCase keys) so results can be
handed to any caller that speaks it; internally the models are plain pydantic
objects with snake_case attributes.
"""

from __future__ import annotations

import time
import uuid
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field

from defi_agent.errors import TaskStateError

TRANSACTION_PLAN_ARTIFACT = "transaction-plan"
EXECUTED_TRANSACTIONS_ARTIFACT = "executed-transactions"


class TaskState(str, Enum):
    SUBMITTED = "submitted"
    WORKING = "working"
    INPUT_REQUIRED = "input-required"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({TaskState.COMPLETED, TaskState.FAILED, TaskState.CANCELED})


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        """Serialize with camelCase keys, dropping unset optionals."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class TextPart(_WireModel):
    kind: Literal["text"] = "text"
    text: str


class DataPart(_WireModel):
    kind: Literal["data"] = "data"
    data: Dict[str, Any]


Part = Annotated[Union[TextPart, DataPart], Field(discriminator="kind")]


class Message(_WireModel):
    kind: Literal["message"] = "message"
    message_id: str = Field(default_factory=lambda: new_id("msg"), alias="messageId")
    role: Literal["agent", "user"] = "agent"
    parts: List[Part] = Field(default_factory=list)
    context_id: Optional[str] = Field(default=None, alias="contextId")

    @property
    def text(self) -> str:
        return "\n".join(p.text for p in self.parts if isinstance(p, TextPart))


class Artifact(_WireModel):
    artifact_id: str = Field(default_factory=lambda: new_id("artifact"), alias="artifactId")
    name: Optional[str] = None
    parts: List[Part] = Field(default_factory=list)


class TaskStatus(_WireModel):
    state: TaskState
    message: Optional[Message] = None


class Task(_WireModel):
    """One unit of work for a single user instruction.

    Once the state is completed, failed or canceled the task is frozen:
    :meth:`transition` raises :class:`TaskStateError` on any further change.
    """

    kind: Literal["task"] = "task"
    id: str = Field(default_factory=lambda: new_id("task"))
    context_id: str = Field(default_factory=lambda: new_id("ctx"), alias="contextId")
    status: TaskStatus = Field(
        default_factory=lambda: TaskStatus(state=TaskState.SUBMITTED)
    )
    artifacts: Optional[List[Artifact]] = None
    history: Optional[List[Dict[str, Any]]] = None

    @property
    def state(self) -> TaskState:
        return self.status.state

    @property
    def is_terminal(self) -> bool:
        return self.status.state.is_terminal

    @property
    def text(self) -> str:
        return self.status.message.text if self.status.message else ""

    def transition(
        self,
        state: TaskState,
        message: Optional[Union[Message, str]] = None,
        artifacts: Optional[Sequence[Artifact]] = None,
    ) -> "Task":
        if self.is_terminal:
            raise TaskStateError(
                f"Task {self.id} is already {self.status.state.value}; "
                f"cannot move to {state.value}"
            )
        if isinstance(message, str):
            message = agent_message(message, context_id=self.context_id)
        self.status = TaskStatus(state=state, message=message or self.status.message)
        if artifacts:
            self.artifacts = [*(self.artifacts or []), *artifacts]
        return self


TaskResult = Union[Task, Message]


def new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def is_task_or_message(value: Any) -> bool:
    return isinstance(value, (Task, Message))


def agent_message(
    text: str,
    context_id: Optional[str] = None,
    data: Optional[Dict[str, Any]] = None,
) -> Message:
    parts: List[Part] = [TextPart(text=text)]
    if data is not None:
        parts.append(DataPart(data=data))
    return Message(role="agent", parts=parts, context_id=context_id)


def create_task(
    state: TaskState,
    text: str,
    *,
    context_id: Optional[str] = None,
    artifacts: Optional[Sequence[Artifact]] = None,
) -> Task:
    context_id = context_id or new_id("ctx")
    return Task(
        context_id=context_id,
        status=TaskStatus(state=state, message=agent_message(text, context_id)),
        artifacts=list(artifacts) if artifacts else None,
    )


def create_success_task(
    text: str,
    artifacts: Optional[Sequence[Artifact]] = None,
    context_id: Optional[str] = None,
) -> Task:
    return create_task(
        TaskState.COMPLETED, text, context_id=context_id, artifacts=artifacts
    )


def create_error_task(text: str, context_id: Optional[str] = None) -> Task:
    return create_task(TaskState.FAILED, text, context_id=context_id)


def create_input_required_task(text: str, context_id: Optional[str] = None) -> Task:
    return create_task(TaskState.INPUT_REQUIRED, text, context_id=context_id)


def create_info_message(text: str, data: Optional[Dict[str, Any]] = None) -> Message:
    return agent_message(text, data=data)


def create_artifact(
    name: str,
    data: Optional[Dict[str, Any]] = None,
    text: Optional[str] = None,
) -> Artifact:
    parts: List[Part] = []
    if text is not None:
        parts.append(TextPart(text=text))
    if data is not None:
        parts.append(DataPart(data=data))
    return Artifact(
        artifact_id=f"{name}-{int(time.time() * 1000)}",
        name=name,
        parts=parts,
    )


def create_transaction_artifact(
    tx_preview: Dict[str, Any],
    tx_plan: Sequence[Any],
) -> Artifact:
    """Pair a human readable preview with the ordered transaction list."""
    plan = [
        entry.model_dump(by_alias=True) if isinstance(entry, BaseModel) else dict(entry)
        for entry in tx_plan
    ]
    return create_artifact(
        TRANSACTION_PLAN_ARTIFACT,
        data={"txPreview": tx_preview, "txPlan": plan},
    )


__all__ = [
    "Artifact",
    "DataPart",
    "EXECUTED_TRANSACTIONS_ARTIFACT",
    "Message",
    "Part",
    "TERMINAL_STATES",
    "TRANSACTION_PLAN_ARTIFACT",
    "Task",
    "TaskResult",
    "TaskState",
    "TaskStatus",
    "TextPart",
    "agent_message",
    "create_artifact",
    "create_error_task",
    "create_info_message",
    "create_input_required_task",
    "create_success_task",
    "create_task",
    "create_transaction_artifact",
    "is_task_or_message",
    "new_id",
]
