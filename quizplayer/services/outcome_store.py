# FILE: quizplayer/services/outcome_store.py
"""
Module outcome store (one JSON file per learner and training)

Outcomes are created empty when a module is first entered, written by accepted
quiz submissions, and reset to empty only by an explicit retry.
"""
import json
import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional

from quizplayer.config import get_settings
from quizplayer.models.progress import ModuleOutcome

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


class OutcomeStore:
    """Persistent store of ModuleOutcome records"""

    def __init__(self, outcomes_dir: Optional[str] = None):
        self.outcomes_dir = Path(outcomes_dir or get_settings().outcomes_dir)
        self.outcomes_dir.mkdir(parents=True, exist_ok=True)

    def _file(self, learner_id: str, training_id: str) -> Path:
        learner = _UNSAFE_CHARS.sub("_", learner_id)
        training = _UNSAFE_CHARS.sub("_", training_id)
        return self.outcomes_dir / f"{learner}__{training}.json"

    def load(self, learner_id: str, training_id: str) -> Dict[str, ModuleOutcome]:
        """All outcomes of a learner in a training, keyed by module id"""
        outcome_file = self._file(learner_id, training_id)
        if not outcome_file.exists():
            return {}

        with open(outcome_file, 'r') as f:
            entry = json.load(f)

        return {
            module_id: ModuleOutcome(**data)
            for module_id, data in entry.get("outcomes", {}).items()
        }

    def _write(self, learner_id: str, training_id: str, outcomes: Dict[str, ModuleOutcome]) -> None:
        entry = {
            "learner_id": learner_id,
            "training_id": training_id,
            "updated_at": datetime.utcnow().isoformat(),
            "outcomes": {module_id: outcome.model_dump() for module_id, outcome in outcomes.items()},
        }
        with open(self._file(learner_id, training_id), 'w') as f:
            json.dump(entry, f, indent=2)

    def get(self, learner_id: str, training_id: str, module_id: str) -> Optional[ModuleOutcome]:
        return self.load(learner_id, training_id).get(module_id)

    def ensure(self, learner_id: str, training_id: str, module_id: str) -> ModuleOutcome:
        """Create an empty outcome on first entry into a module"""
        outcomes = self.load(learner_id, training_id)
        if module_id not in outcomes:
            outcomes[module_id] = ModuleOutcome.empty(module_id)
            self._write(learner_id, training_id, outcomes)
            logger.debug(f"Outcome created: {learner_id}/{training_id}/{module_id}")
        return outcomes[module_id]

    def record(self, learner_id: str, training_id: str, outcome: ModuleOutcome) -> None:
        """Store the outcome of an accepted submission"""
        outcomes = self.load(learner_id, training_id)
        outcomes[outcome.module_id] = outcome
        self._write(learner_id, training_id, outcomes)
        logger.info(
            f"Outcome recorded: {learner_id}/{training_id}/{outcome.module_id} "
            f"score={outcome.score} passed={outcome.passed}"
        )

    def reset(self, learner_id: str, training_id: str, module_id: str) -> None:
        """Roll a module back to an empty outcome (retry)"""
        outcomes = self.load(learner_id, training_id)
        if module_id not in outcomes:
            return
        outcomes[module_id] = ModuleOutcome.empty(module_id)
        self._write(learner_id, training_id, outcomes)
        logger.info(f"Outcome reset: {learner_id}/{training_id}/{module_id}")
