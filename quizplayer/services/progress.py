# FILE: quizplayer/services/progress.py
"""
Training progress for one learner: module access, section completion,
module outcomes and the certificate.

TrainingProgress is also the outcome sink of the quiz sessions the learner
opens inside the training.
"""
import asyncio
import logging
from typing import Dict, List, Optional, Set, Tuple

from quizplayer.config import get_settings
from quizplayer.errors import ModuleLockedError, NavigationError
from quizplayer.models.progress import Certificate, ModuleOutcome, TrainingModule
from quizplayer.models.quizzes import FINAL_EXAM_MODULE_ID, QuizDefinition
from quizplayer.providers.training_api import TrainingApiClient, get_training_api_client
from quizplayer.services.certification import CertificationEngine
from quizplayer.services.gate import ModuleGate
from quizplayer.services.outcome_store import OutcomeStore
from quizplayer.services.telemetry import record_event

logger = logging.getLogger(__name__)

FINAL_EXAM_SECTION_ID = "final-exam-section"


def final_exam_module(quiz: QuizDefinition, order_index: int) -> TrainingModule:
    """The training-level quiz presented as the last module"""
    return TrainingModule(
        id=FINAL_EXAM_MODULE_ID,
        title=quiz.title or "Final Exam",
        order_index=order_index,
        section_ids=[FINAL_EXAM_SECTION_ID],
        quiz=quiz,
    )


class TrainingProgress:
    """One learner's progress through one training"""

    def __init__(
        self,
        learner_id: str,
        training_id: str,
        client: Optional[TrainingApiClient] = None,
        store: Optional[OutcomeStore] = None
    ):
        self.learner_id = learner_id
        self.training_id = training_id
        self.client = client or get_training_api_client()
        self.store = store or OutcomeStore()
        self.training_title = ""
        self.modules: List[TrainingModule] = []
        self.gate = ModuleGate([])
        self.current_module_index: Optional[int] = None
        self.completed_sections: Set[str] = set()
        self.completed_modules: Set[str] = set()

    async def load(self) -> List[TrainingModule]:
        """Fetch modules and quizzes, attach quizzes, append the final exam"""
        training, modules, quizzes = await asyncio.gather(
            self.client.get_training(self.training_id),
            self.client.get_modules(self.training_id),
            self.client.get_training_quizzes(self.training_id),
        )
        self.set_modules(modules, quizzes, training.get("title", ""))
        return self.modules

    def set_modules(
        self,
        modules: List[TrainingModule],
        quizzes: List[QuizDefinition],
        training_title: str = ""
    ) -> None:
        quiz_by_module: Dict[str, QuizDefinition] = {}
        final_exam: Optional[QuizDefinition] = None
        for quiz in quizzes:
            if quiz.is_final_exam:
                final_exam = final_exam or quiz
            else:
                quiz_by_module.setdefault(quiz.module_id, quiz)

        ordered = [
            module.model_copy(update={"quiz": quiz_by_module.get(module.id, module.quiz)})
            for module in modules
        ]
        if final_exam is not None:
            ordered.append(final_exam_module(final_exam, len(ordered)))

        self.training_title = training_title
        self.modules = ordered
        self.gate = ModuleGate(ordered)
        logger.info(
            f"Training {self.training_id} loaded: {len(ordered)} modules "
            f"(final exam: {'yes' if final_exam else 'no'})"
        )

    # ------------------------------------------------------------------
    # Outcomes (OutcomeSink)
    # ------------------------------------------------------------------

    def outcome_map(self) -> Dict[str, ModuleOutcome]:
        return self.store.load(self.learner_id, self.training_id)

    def outcomes(self) -> List[Optional[ModuleOutcome]]:
        """Outcomes in module order (None where the module has none yet)"""
        by_module = self.outcome_map()
        return [by_module.get(module.id) for module in self.modules]

    def record(self, outcome: ModuleOutcome) -> None:
        self.store.record(self.learner_id, self.training_id, outcome)

    def reset(self, module_id: str) -> None:
        self.store.reset(self.learner_id, self.training_id, module_id)

    # ------------------------------------------------------------------
    # Modules and sections
    # ------------------------------------------------------------------

    def module_index(self, module_id: str) -> int:
        for index, module in enumerate(self.modules):
            if module.id == module_id:
                return index
        raise KeyError(module_id)

    def _locate_section(self, section_id: str) -> Tuple[int, TrainingModule]:
        for index, module in enumerate(self.modules):
            if section_id in module.section_ids:
                return index, module
        raise NavigationError(f"Unknown section {section_id}")

    def can_enter(self, index: int) -> bool:
        if not 0 <= index < len(self.modules):
            raise NavigationError(f"Module index {index} out of range")
        return self.gate.can_enter(index, self.outcome_map())

    def enter_module(self, index: int) -> TrainingModule:
        """Open a module; creates its empty outcome on first entry"""
        if not self.can_enter(index):
            record_event(
                "module_locked",
                learner_id=self.learner_id,
                training_id=self.training_id,
                module_index=index,
            )
            raise ModuleLockedError()

        module = self.modules[index]
        if module.has_quiz:
            self.store.ensure(self.learner_id, self.training_id, module.id)
        self.current_module_index = index
        logger.info(f"Learner {self.learner_id} entered module {index} ({module.id})")
        return module

    def complete_section(self, section_id: str) -> None:
        index, module = self._locate_section(section_id)
        if not self.can_enter(index):
            raise ModuleLockedError()
        self.completed_sections.add(section_id)
        logger.debug(f"Section {section_id} of module {module.id} completed")

    def complete_module(self) -> Optional[int]:
        """Leave the current module; returns the next index, None at the end"""
        index = self.current_module_index
        if index is None:
            raise NavigationError("No module entered")
        module = self.modules[index]
        if not self.gate.can_proceed(index, self.outcome_map()):
            required = self.gate.passing_score(module)
            message = (
                f"Minimum score required: {required}%" if required is not None
                else "This module has no quiz to pass"
            )
            raise ModuleLockedError(f"Pass this module's quiz to continue. {message}")

        self.completed_modules.add(module.id)
        if index + 1 < len(self.modules):
            return index + 1
        return None

    def reset_module(self, module_id: str) -> None:
        """Back to module start: forget the module's completed sections"""
        try:
            module = self.modules[self.module_index(module_id)]
        except KeyError:
            return
        self.completed_sections.difference_update(module.section_ids)
        self.completed_modules.discard(module_id)

    @property
    def total_section_count(self) -> int:
        return sum(len(module.section_ids) for module in self.modules)

    def summary(self) -> Dict:
        outcome_map = self.outcome_map()
        access = self.gate.access_map(outcome_map)
        return {
            "learner_id": self.learner_id,
            "training_id": self.training_id,
            "training_title": self.training_title,
            "current_module_index": self.current_module_index,
            "completed_section_count": len(self.completed_sections),
            "total_section_count": self.total_section_count,
            "modules": [
                {
                    "id": module.id,
                    "title": module.title,
                    "has_quiz": module.has_quiz,
                    "quiz_id": module.quiz.id if module.quiz else None,
                    "passing_score": self.gate.passing_score(module),
                    "can_enter": access[module.id],
                    "completed": module.id in self.completed_modules,
                    "outcome": outcome_map[module.id].model_dump() if module.id in outcome_map else None,
                }
                for module in self.modules
            ],
        }

    # ------------------------------------------------------------------
    # Certificate
    # ------------------------------------------------------------------

    def certificate(self, learner_name: str = "") -> Optional[Certificate]:
        outcome_map = self.outcome_map()
        regular = [module for module in self.modules if module.id != FINAL_EXAM_MODULE_ID]
        final = next((module for module in self.modules if module.id == FINAL_EXAM_MODULE_ID), None)

        counted = [
            module for module in regular
            if module.has_quiz or self.gate.quizless_modules_block
        ]
        engine = CertificationEngine(
            training_title=self.training_title,
            total_section_count=self.total_section_count,
            final_exam_passing_score=self.gate.passing_score(final) if final else None,
        )
        certificate = engine.evaluate(
            [outcome_map.get(module.id) for module in counted],
            outcome_map.get(FINAL_EXAM_MODULE_ID),
            has_final_exam=final is not None,
            learner_name=learner_name or self.learner_id,
        )
        if certificate is not None:
            certificate = certificate.model_copy(update={"completed_module_count": len(regular)})
            record_event("certificate_issued", learner_id=self.learner_id, training_id=self.training_id)
        return certificate


class ProgressRegistry:
    """Loaded TrainingProgress per (learner, training)"""

    def __init__(self, store: Optional[OutcomeStore] = None):
        self.store = store
        self.progress: Dict[Tuple[str, str], TrainingProgress] = {}

    async def get(
        self,
        learner_id: str,
        training_id: str,
        client: Optional[TrainingApiClient] = None
    ) -> TrainingProgress:
        key = (learner_id, training_id)
        if key not in self.progress:
            if self.store is None:
                self.store = OutcomeStore(get_settings().outcomes_dir)
            progress = TrainingProgress(learner_id, training_id, client=client, store=self.store)
            await progress.load()
            self.progress[key] = progress
        return self.progress[key]

    def clear(self):
        self.progress = {}


_registry: Optional[ProgressRegistry] = None


def get_progress_registry() -> ProgressRegistry:
    """Get or create global progress registry"""
    global _registry
    if _registry is None:
        _registry = ProgressRegistry()
    return _registry
