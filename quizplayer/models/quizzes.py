# FILE: quizplayer/models/quizzes.py
"""
Quiz definition models

Accepts the training API's camelCase documents (question/type/correctAnswer,
moduleId/passingScore/timeLimit/maxAttempts) as well as snake_case field names.
"""
from enum import Enum
from typing import Any, Optional, Tuple, Union
from pydantic import BaseModel, ConfigDict, Field, model_validator


FINAL_EXAM_MODULE_ID = "final-exam"
TRUE_FALSE_OPTIONS = ("True", "False")


class QuestionKind(str, Enum):
    """Supported question kinds"""
    MULTIPLE_CHOICE = "multiple-choice"
    TRUE_FALSE = "true-false"
    SHORT_ANSWER = "short-answer"


class Question(BaseModel):
    """A single quiz question"""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    prompt: str = Field(..., alias="question")
    kind: QuestionKind = Field(..., alias="type")
    options: Tuple[str, ...] = ()
    correct_answer: Union[bool, int, str] = Field(..., alias="correctAnswer")
    explanation: str = ""
    points: int = Field(default=1, gt=0)
    order_index: int = Field(default=0, alias="orderIndex")

    @model_validator(mode="before")
    @classmethod
    def normalize_document(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if "id" not in data and "_id" in data:
            data["id"] = str(data.pop("_id"))

        kind = data.get("type", data.get("kind"))
        correct_key = "correctAnswer" if "correctAnswer" in data else "correct_answer"
        correct = data.get(correct_key)

        if kind == QuestionKind.TRUE_FALSE.value:
            if not data.get("options"):
                data["options"] = list(TRUE_FALSE_OPTIONS)
            if isinstance(correct, str) and correct.strip().lower() in ("true", "false"):
                data[correct_key] = correct.strip().lower() == "true"
        elif kind == QuestionKind.MULTIPLE_CHOICE.value:
            if isinstance(correct, str) and correct.strip().isdigit():
                data[correct_key] = int(correct.strip())
        return data

    @model_validator(mode="after")
    def check_invariants(self) -> "Question":
        if self.kind == QuestionKind.MULTIPLE_CHOICE:
            if len(self.options) < 2:
                raise ValueError(f"multiple-choice question {self.id} needs at least 2 options")
            if isinstance(self.correct_answer, bool) or not isinstance(self.correct_answer, int):
                raise ValueError(f"multiple-choice question {self.id} needs an option index as correct answer")
            if not 0 <= self.correct_answer < len(self.options):
                raise ValueError(f"correct answer index out of range for question {self.id}")
        elif self.kind == QuestionKind.TRUE_FALSE:
            if tuple(self.options) != TRUE_FALSE_OPTIONS:
                raise ValueError(f"true-false question {self.id} must have options {list(TRUE_FALSE_OPTIONS)}")
            if not isinstance(self.correct_answer, bool):
                raise ValueError(f"true-false question {self.id} needs a boolean correct answer")
        elif self.kind == QuestionKind.SHORT_ANSWER:
            if not isinstance(self.correct_answer, str):
                raise ValueError(f"short-answer question {self.id} needs a text correct answer")
        return self

    def is_correct(self, answer: Any) -> bool:
        """Exact-match check of a learner answer against the answer key"""
        if answer is None:
            return False
        if self.kind == QuestionKind.MULTIPLE_CHOICE:
            return not isinstance(answer, bool) and answer == self.correct_answer
        if self.kind == QuestionKind.TRUE_FALSE:
            return isinstance(answer, bool) and answer is self.correct_answer
        return (
            isinstance(answer, str)
            and answer.strip().casefold() == str(self.correct_answer).strip().casefold()
        )

    def public_view(self) -> dict:
        """Question as shown to the learner (no answer key, no explanation)"""
        return {
            "id": self.id,
            "prompt": self.prompt,
            "kind": self.kind.value,
            "options": list(self.options),
            "points": self.points,
        }


class QuizDefinition(BaseModel):
    """Quiz attached to a module, or the training's final exam when module_id is None"""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    module_id: Optional[str] = Field(default=None, alias="moduleId")
    training_id: Optional[str] = Field(default=None, alias="trainingId")
    title: str = "Quiz"
    description: str = ""
    questions: Tuple[Question, ...] = ()
    passing_score: Optional[int] = Field(default=None, alias="passingScore", ge=0, le=100)
    time_limit_minutes: Optional[int] = Field(default=None, alias="timeLimit", gt=0)
    max_attempts: Optional[int] = Field(default=None, alias="maxAttempts", gt=0)

    @model_validator(mode="before")
    @classmethod
    def normalize_document(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if "id" not in data and "_id" in data:
            data["id"] = str(data.pop("_id"))
        # 0/empty means "not set" in the training API
        for key in ("passingScore", "passing_score", "timeLimit", "time_limit_minutes",
                    "maxAttempts", "max_attempts", "moduleId", "module_id"):
            if key in data and data[key] in (0, "", None):
                data[key] = None
        return data

    @property
    def is_final_exam(self) -> bool:
        return self.module_id is None

    @property
    def outcome_key(self) -> str:
        """Module id under which this quiz's outcome is stored"""
        return self.module_id or FINAL_EXAM_MODULE_ID

    def effective_passing_score(self, module_default: int = 70, final_exam_default: int = 80) -> int:
        if self.passing_score is not None:
            return self.passing_score
        return final_exam_default if self.is_final_exam else module_default

    def question_index(self, question_id: str) -> int:
        for index, question in enumerate(self.questions):
            if question.id == question_id:
                return index
        raise KeyError(question_id)
