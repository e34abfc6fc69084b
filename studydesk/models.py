"""Pydantic models for type safety."""

import uuid
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


MessageKind = Literal["prompt", "step", "text", "complete", "raw", "error"]


class Message(BaseModel):
    """One turn of a tutoring dialogue.

    `content` is what the student sees; `wire_content`, when set, is what the
    completion service receives instead.
    """
    model_config = ConfigDict(frozen=True)

    role: Literal["system", "user", "assistant"]
    content: str
    wire_content: Optional[str] = None
    kind: Optional[MessageKind] = None

    def to_wire(self) -> dict:
        text = self.wire_content if self.wire_content is not None else self.content
        return {"role": self.role, "content": text}


class StepRecord(BaseModel):
    """One structured unit of tutor output (step, text or complete)."""
    model_config = ConfigDict(populate_by_name=True)

    kind: Literal["step", "text", "complete"] = Field(alias="type")
    step_number: Optional[int] = Field(default=None, alias="step", ge=1)
    total_steps: Optional[int] = Field(default=None, alias="totalSteps", ge=1)
    question_prompt: Optional[str] = Field(default=None, alias="question")
    options: List[str] = []
    correct_option_index: Optional[int] = Field(default=None, alias="correctIndex")
    content: Optional[str] = None

    @field_validator("options", mode="before")
    @classmethod
    def _numbers_as_text(cls, value):
        # Numeric answers often arrive unquoted.
        if isinstance(value, list):
            return [str(v) if isinstance(v, (int, float)) and not isinstance(v, bool) else v for v in value]
        return value

    @model_validator(mode="after")
    def _check_shape(self) -> "StepRecord":
        if self.kind == "step":
            if self.step_number is None or self.total_steps is None:
                raise ValueError("step records need step and totalSteps")
            if not self.question_prompt or not self.options:
                raise ValueError("step records need a question and options")
            # Index points into the real choices; the trailing skip entry is excluded.
            idx = self.correct_option_index
            if idx is not None and not 0 <= idx < max(len(self.options) - 1, 1):
                self.correct_option_index = None
        elif self.content is None:
            raise ValueError(f"{self.kind} records need content")
        return self

    def to_wire_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_defaults=True)


class QuestionData(BaseModel):
    """Question descriptor handed to the tutor."""
    id: Optional[str] = None
    question_text: str
    answer: str
    type: Literal["multiple_choice", "short_answer"] = "short_answer"
    choices: Optional[List[str]] = None
    explanation: Optional[str] = None


class PendingOption(BaseModel):
    """The latest option selection still waiting on the tutor's reaction."""
    step_number: int
    option_index: int
    option_text: str
    is_skip: bool = False
    correct_option_index: Optional[int] = None


class SessionState(BaseModel):
    """Mutable state of one tutoring dialogue (one question)."""
    session_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    question_id: Optional[str] = None
    messages: List[Message] = []
    current_step: Optional[StepRecord] = None
    committed_total_steps: Optional[int] = None
    max_step_observed: int = 0
    is_completed: bool = False
    wrong_answer_counts: Dict[int, int] = {}
    pending_option: Optional[PendingOption] = None
    events: List[Dict[str, str]] = []  # Tutor activity trail, in-memory only


class ChunkMatch(BaseModel):
    """One nearest-neighbour hit from the vector search."""
    pdf_id: str
    chunk_index: int
    similarity: float
    content: str


class Source(BaseModel):
    source_name: str
    chunk_index: int
    similarity_score: float
    preview_text: str


class ChatReply(BaseModel):
    message: str
    sources: List[Source] = []


class Folder(BaseModel):
    id: str
    name: str


class PdfDocument(BaseModel):
    id: str
    folder_id: str
    filename: str
    file_url: str
    rag_status: str = "pending"


class Chapter(BaseModel):
    id: str
    title: str
    order: int = 0


class Section(BaseModel):
    id: str
    chapter_id: str
    title: str
    order: int = 0


class Question(QuestionData):
    id: str
    section_id: str
    order: int = 0


class QuestionDraft(BaseModel):
    """User-authored question before it is stored."""
    section_id: str
    type: Literal["multiple_choice", "short_answer"] = "multiple_choice"
    question_text: str
    choices: Optional[List[str]] = None
    answer: str
    explanation: Optional[str] = None

    @field_validator("question_text", "answer")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be empty")
        return value

    @field_validator("explanation")
    @classmethod
    def _blank_to_none(cls, value: Optional[str]) -> Optional[str]:
        return value if value and value.strip() else None

    @model_validator(mode="after")
    def _check_choices(self) -> "QuestionDraft":
        if self.type == "multiple_choice":
            if not self.choices or any(not c.strip() for c in self.choices):
                raise ValueError("every choice of a multiple choice question must be filled in")
        else:
            self.choices = None
        return self
