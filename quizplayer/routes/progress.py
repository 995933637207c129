# FILE: quizplayer/routes/progress.py
"""
Training progress endpoints (module gate, sections, certificate)
"""
import logging
from typing import Optional
from fastapi import APIRouter

from quizplayer.services.progress import get_progress_registry
from quizplayer.services.session_registry import get_session_registry

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/{learner_id}/trainings/{training_id}")
async def get_progress(learner_id: str, training_id: str):
    """Modules with access flags and outcomes"""
    progress = await get_progress_registry().get(learner_id, training_id)
    return progress.summary()


@router.get("/{learner_id}/trainings/{training_id}/modules/{index}/access")
async def module_access(learner_id: str, training_id: str, index: int):
    progress = await get_progress_registry().get(learner_id, training_id)
    return {"module_index": index, "can_enter": progress.can_enter(index)}


@router.post("/{learner_id}/trainings/{training_id}/modules/{index}/enter")
async def enter_module(learner_id: str, training_id: str, index: int):
    logger.info(f"Enter module: learner={learner_id} training={training_id} index={index}")
    progress = await get_progress_registry().get(learner_id, training_id)
    module = progress.enter_module(index)
    get_session_registry().close_for_module_switch(learner_id, module.id)
    return {
        "module_index": index,
        "module_id": module.id,
        "title": module.title,
        "section_ids": module.section_ids,
        "quiz_id": module.quiz.id if module.quiz else None,
    }


@router.post("/{learner_id}/trainings/{training_id}/modules/{index}/complete")
async def complete_module(learner_id: str, training_id: str, index: int):
    """Continue to the next module (requires this module's quiz to be passed)"""
    progress = await get_progress_registry().get(learner_id, training_id)
    if progress.current_module_index != index:
        module = progress.enter_module(index)
        get_session_registry().close_for_module_switch(learner_id, module.id)
    next_index = progress.complete_module()
    return {"completed_module_index": index, "next_module_index": next_index}


@router.post("/{learner_id}/trainings/{training_id}/modules/{index}/restart")
async def restart_module(learner_id: str, training_id: str, index: int):
    """Back to module start: clears the module's completed sections"""
    progress = await get_progress_registry().get(learner_id, training_id)
    module = progress.enter_module(index)
    get_session_registry().close_for_module_switch(learner_id, module.id)
    progress.reset_module(module.id)
    return {"module_index": index, "completed_section_count": len(progress.completed_sections)}


@router.post("/{learner_id}/trainings/{training_id}/sections/{section_id}/complete")
async def complete_section(learner_id: str, training_id: str, section_id: str):
    progress = await get_progress_registry().get(learner_id, training_id)
    progress.complete_section(section_id)
    return {
        "section_id": section_id,
        "completed_section_count": len(progress.completed_sections),
        "total_section_count": progress.total_section_count,
    }


@router.get("/{learner_id}/trainings/{training_id}/certificate")
async def get_certificate(learner_id: str, training_id: str, learner_name: Optional[str] = None):
    progress = await get_progress_registry().get(learner_id, training_id)
    certificate = progress.certificate(learner_name or learner_id)
    if certificate is None:
        return {"awarded": False, "certificate": None}
    return {"awarded": True, "certificate": certificate.model_dump(mode="json")}
