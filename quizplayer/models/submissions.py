# FILE: quizplayer/models/submissions.py
"""
Submission payload and server verdict models

Field aliases match the training API wire format (camelCase).
"""
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field


class SubmissionMetadata(BaseModel):
    """Security metadata sent with every submission for server-side audit"""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    start_time: int = Field(..., alias="startTime")
    end_time: int = Field(..., alias="endTime")
    violation_count: int = Field(default=0, alias="violationCount")
    question_response_times: Dict[str, int] = Field(default_factory=dict, alias="questionResponseTimes")
    violation_types: List[str] = Field(default_factory=list, alias="violationTypes")
    violations_by_question: Dict[str, List[str]] = Field(default_factory=dict, alias="violationsByQuestion")
    user_agent: str = Field(default="", alias="userAgent")
    session_token: str = Field(default="no-token", alias="sessionToken")
    locked_questions: List[str] = Field(default_factory=list, alias="lockedQuestions")
    tab_switch_count: int = Field(default=0, alias="tabSwitchCount")
    keyboard_shortcut_attempted: bool = Field(default=False, alias="keyboardShortcutAttempted")
    copy_paste_attempted: bool = Field(default=False, alias="copyPasteAttempted")
    right_click_attempted: bool = Field(default=False, alias="rightClickAttempted")


class SubmissionPayload(BaseModel):
    """Body of POST /manual-trainings/quizzes/{quizId}/submit"""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    user_id: str = Field(..., alias="userId")
    answers: Dict[str, Any]
    metadata: SubmissionMetadata

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class SubmissionResult(BaseModel):
    """Server verdict on a submission"""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    score: Optional[int] = Field(default=None, ge=0, le=100)
    passed: Optional[bool] = None
    security_violation: bool = Field(default=False, alias="securityViolation")
    security_message: Optional[str] = Field(default=None, alias="securityMessage")
    penalty_applied: bool = Field(default=False, alias="penaltyApplied")
    penalty_percentage: Optional[float] = Field(default=None, alias="penaltyPercentage")
