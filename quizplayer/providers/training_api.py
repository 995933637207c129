# FILE: quizplayer/providers/training_api.py
"""
Training API client (quiz definitions, module listings, submissions)
"""
import logging
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from quizplayer.config import get_settings
from quizplayer.errors import QuizUnavailableError, SubmissionTransportError
from quizplayer.models.progress import TrainingModule
from quizplayer.models.quizzes import QuizDefinition
from quizplayer.models.submissions import SubmissionPayload, SubmissionResult

logger = logging.getLogger(__name__)


def unwrap(body: Any) -> Any:
    """Strip the {success, data} envelope the API puts around most responses"""
    if isinstance(body, dict) and "success" in body and "data" in body:
        if body.get("success") is False:
            raise QuizUnavailableError(body.get("message") or "Training API reported failure")
        return body["data"]
    return body


def _document_id(doc: Dict[str, Any]) -> str:
    return str(doc.get("id") or doc.get("_id") or "")


def parse_module(doc: Dict[str, Any]) -> TrainingModule:
    sections = doc.get("sections") or []
    section_ids = [
        section if isinstance(section, str) else _document_id(section)
        for section in sections
    ]
    return TrainingModule(
        id=_document_id(doc),
        title=doc.get("title", ""),
        order_index=doc.get("orderIndex", doc.get("order_index", 0)) or 0,
        section_ids=[section_id for section_id in section_ids if section_id],
    )


class TrainingApiClient:
    """Async client for the remote training API"""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        settings = get_settings()
        self.base_url = (base_url or settings.training_api_base_url).rstrip("/")
        self.timeout = timeout or settings.training_api_timeout
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=transport,
            headers={"Content-Type": "application/json"},
        )
        logger.info(f"Training API client: base_url={self.base_url}")

    async def aclose(self):
        await self._client.aclose()

    async def _get(self, path: str) -> Any:
        try:
            response = await self._client.get(path)
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Training API GET {path} failed: {e}")
            raise QuizUnavailableError(f"No quiz available ({e})")
        return unwrap(body)

    @staticmethod
    def _parse_quiz(doc: Any) -> QuizDefinition:
        try:
            return QuizDefinition.model_validate(doc)
        except ValidationError as e:
            logger.error(f"Malformed quiz definition: {e}")
            raise QuizUnavailableError(f"Malformed quiz definition: {e.error_count()} error(s)")

    async def get_training(self, training_id: str) -> Dict[str, Any]:
        data = await self._get(f"/manual-trainings/{training_id}")
        return data if isinstance(data, dict) else {}

    async def get_modules(self, training_id: str) -> List[TrainingModule]:
        """Modules of a training in order_index order"""
        data = await self._get(f"/manual-trainings/{training_id}/modules")
        modules = [parse_module(doc) for doc in data or []]
        return sorted(modules, key=lambda module: module.order_index)

    async def get_module_quizzes(self, module_id: str) -> List[QuizDefinition]:
        data = await self._get(f"/manual-trainings/modules/{module_id}/quizzes")
        return [self._parse_quiz(doc) for doc in data or []]

    async def get_training_quizzes(self, training_id: str) -> List[QuizDefinition]:
        """All quizzes of a training; the final exam is the one without module_id"""
        data = await self._get(f"/manual-trainings/{training_id}/quizzes")
        return [self._parse_quiz(doc) for doc in data or []]

    async def get_quiz(self, quiz_id: str) -> QuizDefinition:
        data = await self._get(f"/manual-trainings/quizzes/{quiz_id}")
        if not data:
            raise QuizUnavailableError(f"No quiz available ({quiz_id})")
        return self._parse_quiz(data)

    async def submit_quiz(self, quiz_id: str, payload: SubmissionPayload) -> SubmissionResult:
        """POST an attempt; any transport or decoding failure is retryable"""
        path = f"/manual-trainings/quizzes/{quiz_id}/submit"
        try:
            response = await self._client.post(path, json=payload.to_wire())
            response.raise_for_status()
            body = unwrap(response.json())
            return SubmissionResult.model_validate(body)
        except (httpx.HTTPError, ValueError, QuizUnavailableError) as e:
            logger.error(f"Training API POST {path} failed: {e}")
            raise SubmissionTransportError(f"Error submitting quiz. Please try again. ({e})")


_client: Optional[TrainingApiClient] = None


def get_training_api_client() -> TrainingApiClient:
    """Get or create global training API client"""
    global _client
    if _client is None:
        _client = TrainingApiClient()
    return _client


async def close_training_api_client():
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None
