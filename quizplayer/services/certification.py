# FILE: quizplayer/services/certification.py
"""
Certification engine

Recomputed every time a certificate is displayed; nothing is stored.
"""
import logging
from datetime import date
from typing import Optional, Sequence

from quizplayer.config import get_settings
from quizplayer.models.progress import Certificate, ModuleOutcome
from quizplayer.models.quizzes import FINAL_EXAM_MODULE_ID

logger = logging.getLogger(__name__)


class CertificationEngine:
    """Award/no-award decision over module outcomes and the final exam"""

    def __init__(
        self,
        training_title: str,
        total_section_count: int = 0,
        final_exam_passing_score: Optional[int] = None
    ):
        self.training_title = training_title
        self.total_section_count = total_section_count
        self.final_exam_passing_score = (
            final_exam_passing_score
            if final_exam_passing_score is not None
            else get_settings().default_final_exam_passing_score
        )

    def evaluate(
        self,
        outcomes: Sequence[Optional[ModuleOutcome]],
        final_exam_outcome: Optional[ModuleOutcome],
        has_final_exam: bool = True,
        learner_name: str = "",
        completion_date: Optional[date] = None
    ) -> Optional[Certificate]:
        """
        Certificate iff every module outcome passed and, when a final exam is
        configured, the final exam passed at or above its passing score.
        """
        module_outcomes = [
            outcome for outcome in outcomes
            if outcome is None or outcome.module_id != FINAL_EXAM_MODULE_ID
        ]
        if not all(outcome is not None and outcome.passed for outcome in module_outcomes):
            return None

        final_score: Optional[int] = None
        if has_final_exam:
            if final_exam_outcome is None or not final_exam_outcome.passed:
                return None
            final_score = final_exam_outcome.score
            if final_score is None or final_score < self.final_exam_passing_score:
                return None
        else:
            logger.debug(f"No final exam configured for '{self.training_title}'; evaluating modules only")

        return Certificate(
            learner_name=learner_name,
            training_title=self.training_title,
            completed_module_count=len(module_outcomes),
            total_section_count=self.total_section_count,
            final_score=final_score,
            completion_date=completion_date or date.today(),
        )
