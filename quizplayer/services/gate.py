# FILE: quizplayer/services/gate.py
"""
Module gate

A learner may enter module N only when every earlier module's quiz was
attempted and passed. Index 0 is always open.

A module without a quiz never produces an outcome, so by default it blocks
everything after it. That strands learners with no remediation path; it is
kept for compatibility and logged each time it blocks. Set
QUIZLESS_MODULES_BLOCK=false to let quiz-less modules through.
"""
import logging
from typing import Dict, List, Mapping, Optional, Sequence

from quizplayer.config import get_settings
from quizplayer.models.progress import ModuleOutcome, TrainingModule
from quizplayer.models.quizzes import FINAL_EXAM_MODULE_ID

logger = logging.getLogger(__name__)


def outcome_clears(outcome: Optional[ModuleOutcome], passing_score: int) -> bool:
    """attempted, passed, and at or above the passing score"""
    if outcome is None or not outcome.attempted or not outcome.passed:
        return False
    return outcome.score is not None and outcome.score >= passing_score


def can_enter(
    module_index: int,
    outcomes: Sequence[Optional[ModuleOutcome]],
    passing_scores: Optional[Sequence[Optional[int]]] = None,
    default_passing_score: int = 70
) -> bool:
    """
    Pure gate over positional outcomes: outcomes[i] belongs to module i
    (None when the module has no outcome yet).
    """
    if module_index < 0:
        raise ValueError("module_index must not be negative")
    if module_index == 0:
        return True

    for i in range(module_index):
        outcome = outcomes[i] if i < len(outcomes) else None
        required = default_passing_score
        if passing_scores is not None and i < len(passing_scores) and passing_scores[i] is not None:
            required = passing_scores[i]
        if not outcome_clears(outcome, required):
            return False
    return True


class ModuleGate:
    """Gate policy over a training's ordered modules"""

    def __init__(
        self,
        modules: Sequence[TrainingModule],
        quizless_modules_block: Optional[bool] = None,
        module_default_passing_score: Optional[int] = None,
        final_exam_default_passing_score: Optional[int] = None
    ):
        settings = get_settings()
        self.modules: List[TrainingModule] = list(modules)
        self.quizless_modules_block = (
            settings.quizless_modules_block if quizless_modules_block is None else quizless_modules_block
        )
        self.module_default = module_default_passing_score or settings.default_module_passing_score
        self.final_exam_default = final_exam_default_passing_score or settings.default_final_exam_passing_score

    def passing_score(self, module: TrainingModule) -> Optional[int]:
        if not module.has_quiz:
            return None
        return module.quiz.effective_passing_score(self.module_default, self.final_exam_default)

    def _module_clears(self, module: TrainingModule, outcomes: Mapping[str, ModuleOutcome]) -> bool:
        if not module.has_quiz:
            if self.quizless_modules_block:
                logger.warning(
                    f"Module '{module.title or module.id}' has no quiz and blocks progression "
                    f"(QUIZLESS_MODULES_BLOCK is on)"
                )
                return False
            return True
        return outcome_clears(outcomes.get(module.id), self.passing_score(module))

    def can_enter(self, module_index: int, outcomes: Mapping[str, ModuleOutcome]) -> bool:
        """May the learner open module_index given outcomes keyed by module id"""
        if not 0 <= module_index < len(self.modules):
            raise IndexError(f"Module index {module_index} out of range")
        if module_index == 0:
            return True
        return all(self._module_clears(module, outcomes) for module in self.modules[:module_index])

    def can_proceed(self, current_index: int, outcomes: Mapping[str, ModuleOutcome]) -> bool:
        """May the learner leave the current module for the next one"""
        module = self.modules[current_index]
        if module.id == FINAL_EXAM_MODULE_ID:
            return True
        return self._module_clears(module, outcomes)

    def access_map(self, outcomes: Mapping[str, ModuleOutcome]) -> Dict[str, bool]:
        """Module id -> enterable, for sidebars"""
        access: Dict[str, bool] = {}
        open_so_far = True
        for index, module in enumerate(self.modules):
            access[module.id] = open_so_far if index > 0 else True
            open_so_far = open_so_far and self._module_clears(module, outcomes)
        return access
