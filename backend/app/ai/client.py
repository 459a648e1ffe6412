"""
Client for the generative-text backend.

The backend accepts either a single-content task
    {"task": "summarize", "content": "..."}
or a conversation action
    {"action": "simplify", "messages": [...], "conversationId": ...}
and answers with {"result": "..."}.
"""
from typing import Any, Optional

import httpx
from fastapi import HTTPException, status

from app.core.config import settings
from app.core.logging import ai_logger
from app.db.enums import AIAction, AITask

AI_UNAVAILABLE_CODE = "ai/service-unavailable"

SENTIMENTS = ("positive", "negative", "neutral")


class AIServiceUnavailable(HTTPException):
    def __init__(self, message: str = "The AI service is currently unavailable. Please try again in a few moments."):
        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"code": AI_UNAVAILABLE_CODE, "message": message},
        )


def normalize_sentiment(text: str) -> str:
    """Reduce a free-text sentiment answer to positive, negative or neutral."""
    lowered = (text or "").strip().lower()
    for label in SENTIMENTS:
        if lowered.startswith(label):
            return label
    return "neutral"


class GenerativeTextClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url if base_url is not None else settings.AI_SERVICE_URL
        self.api_key = api_key if api_key is not None else settings.AI_SERVICE_API_KEY
        self.timeout = timeout or settings.AI_TIMEOUT_SECONDS
        self._transport = transport

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def _post(self, body: dict[str, Any]) -> dict:
        if not self.base_url:
            ai_logger.warning("AI_SERVICE_URL not configured")
            raise AIServiceUnavailable()

        kind = body.get("task") or body.get("action")
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.base_url, json=body, headers=self._headers())
            response.raise_for_status()
            data = response.json()
        except httpx.TimeoutException:
            ai_logger.error("AI request timed out", kind=kind, timeout=self.timeout)
            raise AIServiceUnavailable("The AI service took too long to respond. Please try again.")
        except httpx.HTTPStatusError as e:
            ai_logger.error("AI request rejected", kind=kind, status_code=e.response.status_code)
            raise AIServiceUnavailable()
        except httpx.RequestError as e:
            ai_logger.error("AI request failed", error=e, kind=kind)
            raise AIServiceUnavailable()
        except ValueError as e:
            ai_logger.error("AI response was not JSON", error=e, kind=kind)
            raise AIServiceUnavailable()

        if not isinstance(data, dict) or "result" not in data:
            ai_logger.error("AI response missing result", kind=kind)
            raise AIServiceUnavailable()
        ai_logger.info("AI request completed", kind=kind)
        return data

    async def run_task(self, task: AITask | str, content: str) -> str:
        """Run a single-content task. Unknown task names raise ValueError."""
        task = AITask(task)
        data = await self._post({"task": task.value, "content": content})
        result = str(data["result"])
        if task is AITask.sentiment:
            return normalize_sentiment(result)
        return result

    async def run_action(
        self,
        action: AIAction | str,
        messages: list[dict],
        conversation_id: Optional[Any] = None,
    ) -> str:
        """Summarize or simplify a list of `{sender_name, content}` messages."""
        action = AIAction(action)
        body = {
            "action": action.value,
            "messages": messages,
            "conversationId": conversation_id,
        }
        data = await self._post(body)
        return str(data["result"])


_client: Optional[GenerativeTextClient] = None


def get_ai_client() -> GenerativeTextClient:
    global _client
    if _client is None:
        _client = GenerativeTextClient()
    return _client
