"""Structured payloads recovered from model responses.

Models emit camelCase keys; every payload accepts camelCase or snake_case on
input and serializes camelCase via ``dump_payload``.
"""

from __future__ import annotations

from datetime import date
from typing import Annotated, Any, Literal, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    TypeAdapter,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

NodeStatus = Literal["pending", "added", "complete"]
DraftStatus = Literal["building", "complete"]


def _coerce_id(value: Any) -> Any:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value


NodeId = Annotated[str | None, BeforeValidator(_coerce_id)]


class PayloadModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        str_strip_whitespace=True,
    )


class ChecklistItem(PayloadModel):
    id: NodeId = None
    label: str
    status: NodeStatus = "pending"


class Subtask(PayloadModel):
    id: NodeId = None
    name: str
    status: NodeStatus = "pending"


class WorkflowTask(PayloadModel):
    id: NodeId = None
    name: str
    description: str = ""
    status: NodeStatus = "pending"
    subtasks: list[Subtask] = Field(default_factory=list)
    checklists: list[ChecklistItem] = Field(default_factory=list)


class WorkflowStep(PayloadModel):
    id: NodeId = None
    name: str
    description: str = ""
    order: int = 0
    status: NodeStatus = "pending"
    tasks: list[WorkflowTask] = Field(default_factory=list)


class WorkflowStage(PayloadModel):
    id: NodeId = None
    name: str
    order: int = 0
    status: NodeStatus = "pending"
    steps: list[WorkflowStep] = Field(default_factory=list)


class WorkflowDraft(PayloadModel):
    kind: Literal["workflow"] = "workflow"
    name: str
    description: str = ""
    status: DraftStatus = "building"
    stages: list[WorkflowStage] = Field(default_factory=list)

    @model_validator(mode="after")
    def _assign_unique_ids(self) -> WorkflowDraft:
        # Missing or repeated ids get a path-derived id so every node is addressable.
        seen: set[str] = set()

        def claim(node: Any, path: str) -> None:
            candidate = node.id or path
            suffix = 2
            while candidate in seen:
                candidate = f"{node.id or path}-{suffix}"
                suffix += 1
            node.id = candidate
            seen.add(candidate)

        for i, stage in enumerate(self.stages, start=1):
            stage_path = f"stage-{i}"
            claim(stage, stage_path)
            for j, step in enumerate(stage.steps, start=1):
                step_path = f"{stage_path}-step-{j}"
                claim(step, step_path)
                for k, task in enumerate(step.tasks, start=1):
                    task_path = f"{step_path}-task-{k}"
                    claim(task, task_path)
                    for m, subtask in enumerate(task.subtasks, start=1):
                        claim(subtask, f"{task_path}-subtask-{m}")
                    for m, item in enumerate(task.checklists, start=1):
                        claim(item, f"{task_path}-check-{m}")
        return self

    def node_ids(self) -> list[str]:
        ids: list[str] = []
        for stage in self.stages:
            ids.append(stage.id)
            for step in stage.steps:
                ids.append(step.id)
                for task in step.tasks:
                    ids.append(task.id)
                    ids.extend(s.id for s in task.subtasks)
                    ids.extend(c.id for c in task.checklists)
        return ids


class TaskExtraction(PayloadModel):
    kind: Literal["task"] = "task"
    title: str = Field(min_length=1)
    description: str = ""
    priority: Literal["low", "medium", "high", "urgent"] = "medium"
    due_date: date | None = None
    assignee: str | None = None
    tags: list[str] = Field(default_factory=list)
    email_subject: str | None = None
    email_sender: str | None = None
    message_subject: str | None = None
    message_sender: str | None = None
    status: Literal["extracted", "confirmed"] = "extracted"

    @field_validator("priority", mode="before")
    @classmethod
    def _lower_priority(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) else value

    @field_validator("assignee", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("due_date", mode="before")
    @classmethod
    def _lenient_due_date(cls, value: Any) -> Any:
        # Models sometimes emit "end of week" or a full timestamp; keep the task either way.
        if not isinstance(value, str):
            return value
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError:
            return None


class DocumentDraft(PayloadModel):
    kind: Literal["document"] = "document"
    title: str = Field(min_length=1)
    type: str = "Document"
    body: str = Field(min_length=1, validation_alias=AliasChoices("body", "content"))
    status: Literal["generating", "complete"] = "complete"


class TemplateDraft(PayloadModel):
    kind: Literal["template"] = "template"
    name: str = Field(min_length=1)
    category: str = "custom"
    content: str | None = None
    subject: str | None = None
    body: str | None = None
    variables: list[str] = Field(default_factory=list)
    status: DraftStatus = "building"

    @model_validator(mode="after")
    def _require_text(self) -> TemplateDraft:
        if not (self.content or self.body):
            raise ValueError("template needs either content or body")
        return self


class FormField(PayloadModel):
    id: NodeId = None
    label: str
    type: Literal["text", "email", "number", "date", "checkbox", "select", "textarea"] = "text"
    required: bool = False
    placeholder: str | None = None
    options: list[str] = Field(default_factory=list)
    order: int = 0


class FormDraft(PayloadModel):
    kind: Literal["form"] = "form"
    name: str = Field(min_length=1)
    description: str = ""
    fields: list[FormField] = Field(default_factory=list)
    status: DraftStatus = "building"

    @model_validator(mode="after")
    def _assign_field_ids(self) -> FormDraft:
        seen: set[str] = set()
        for i, form_field in enumerate(self.fields, start=1):
            candidate = form_field.id
            if not candidate or candidate in seen:
                candidate = f"field-{i}"
                suffix = 2
                while candidate in seen:
                    candidate = f"field-{i}-{suffix}"
                    suffix += 1
            form_field.id = candidate
            seen.add(candidate)
        return self


class AnalysisRecord(PayloadModel):
    """Free-form record whose shape is declared by the agent via ``required_keys``."""

    kind: Literal["analysis"] = "analysis"
    schema_name: str
    data: dict[str, Any]


StructuredPayload = Annotated[
    Union[WorkflowDraft, TaskExtraction, DocumentDraft, TemplateDraft, FormDraft, AnalysisRecord],
    Field(discriminator="kind"),
]

_payload_adapter: TypeAdapter = TypeAdapter(StructuredPayload)


def dump_payload(payload: BaseModel | None) -> dict | None:
    if payload is None:
        return None
    return payload.model_dump(mode="json", by_alias=True)


def load_payload(data: dict | None) -> BaseModel | None:
    """Rehydrate a payload previously produced by ``dump_payload``."""
    if data is None:
        return None
    return _payload_adapter.validate_python(data)
