# FILE: quizplayer/models/progress.py
"""
Progress models: module outcomes, training modules, certificates
"""
from datetime import date
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field

from quizplayer.models.quizzes import QuizDefinition


class ModuleOutcome(BaseModel):
    """Result of a module's quiz for one learner"""
    module_id: str
    attempted: bool = False
    passed: bool = False
    score: Optional[int] = Field(default=None, ge=0, le=100)

    @classmethod
    def empty(cls, module_id: str) -> "ModuleOutcome":
        return cls(module_id=module_id)


class TrainingModule(BaseModel):
    """Module of a training, in learner-facing order"""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    title: str = ""
    order_index: int = Field(default=0, alias="orderIndex")
    section_ids: List[str] = Field(default_factory=list, alias="sectionIds")
    quiz: Optional[QuizDefinition] = None

    @property
    def has_quiz(self) -> bool:
        return self.quiz is not None and len(self.quiz.questions) > 0


class Certificate(BaseModel):
    """Certificate of completion (read-time projection, never stored)"""
    learner_name: str
    training_title: str
    completed_module_count: int
    total_section_count: int
    final_score: Optional[int] = None
    completion_date: date
