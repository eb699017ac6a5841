"""
LLM service for generating responses through an OpenAI-compatible chat API
"""
import json
import re
from typing import AsyncGenerator, Dict, List, Optional

import httpx
import structlog

from emr_assistant.services.config import Settings

logger = structlog.get_logger()

MAX_SUMMARY_POINTS = 10


class LLMServiceError(Exception):
    """Raised when the model service cannot produce a response"""


def parse_response_to_points(content: str) -> List[str]:
    """
    Split a completion into line-like segments.

    Bullet and numbered items are preferred; if the model answered in prose the
    text is split into sentences instead.
    """
    content = content.strip()
    points: List[str] = []

    for part in re.split(r"\n(?=\s*[•\-\*\d\.\)\s])", content):
        line = re.sub(r"^\s*[•\-\*\d\.\)]+\s*", "", part.strip()).strip()
        if len(line) > 10:
            points.append(line)

    if not points:
        for sentence in re.split(r"[.!?]+", content):
            sentence = sentence.strip()
            if len(sentence) > 20:
                points.append(f"{sentence}.")

    return points[:MAX_SUMMARY_POINTS]


class LLMService:
    """Service for LLM generation"""

    def __init__(self, settings: Settings, http_client: Optional[httpx.AsyncClient] = None):
        self.settings = settings
        self.http_client = http_client or httpx.AsyncClient(timeout=settings.REQUEST_TIMEOUT)

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.settings.LLM_API_KEY:
            headers["Authorization"] = f"Bearer {self.settings.LLM_API_KEY}"
        return headers

    def _payload(self, user_prompt: str, system_prompt: str, max_tokens: int, stream: bool) -> Dict:
        return {
            "model": self.settings.MODEL_NAME,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt}
            ],
            "max_tokens": max_tokens,
            "temperature": self.settings.TEMPERATURE,
            "stream": stream
        }

    async def stream_response(
        self,
        user_prompt: str,
        system_prompt: str,
        max_tokens: Optional[int] = None
    ) -> AsyncGenerator[str, None]:
        """
        Yield text deltas as the model produces them. Raises LLMServiceError.
        """
        payload = self._payload(user_prompt, system_prompt, max_tokens or self.settings.MAX_TOKENS, stream=True)

        logger.info(
            "Preparing streaming request",
            model=self.settings.MODEL_NAME,
            system_prompt_length=len(system_prompt),
            user_prompt_length=len(user_prompt),
            max_tokens=payload["max_tokens"]
        )

        try:
            async with self.http_client.stream(
                "POST",
                self.settings.get_chat_completions_url(),
                json=payload,
                headers=self._headers(),
                timeout=self.settings.STREAM_TIMEOUT
            ) as response:
                response.raise_for_status()

                async for line in response.aiter_lines():
                    if not line.startswith("data: "):
                        continue
                    data = line[6:]
                    if data == "[DONE]":
                        break

                    try:
                        chunk = json.loads(data)
                    except json.JSONDecodeError:
                        logger.warning("Failed to parse stream chunk", raw=data[:100])
                        continue

                    if "error" in chunk:
                        raise LLMServiceError(f"Model stream error: {chunk['error']}")

                    choices = chunk.get("choices") or []
                    if choices:
                        text = (choices[0].get("delta") or {}).get("content")
                        if text:
                            yield text

        except httpx.HTTPStatusError as e:
            logger.error(
                "LLM request failed",
                status=e.response.status_code,
                error=str(e)
            )
            raise LLMServiceError(f"Model service returned {e.response.status_code}") from e

        except httpx.HTTPError as e:
            logger.error("LLM transport error", error=str(e))
            raise LLMServiceError(f"Model service unreachable: {e}") from e

    async def generate_summary(
        self,
        context: Optional[str],
        prompt: str,
        system_prompt: str,
        max_tokens: Optional[int] = None
    ) -> List[str]:
        """
        Generate a complete (non-streaming) response split into points
        """
        user_prompt = f"{context}\n\n{prompt}" if context else prompt
        payload = self._payload(user_prompt, system_prompt, max_tokens or self.settings.SUMMARY_MAX_TOKENS, stream=False)

        try:
            response = await self.http_client.post(
                self.settings.get_chat_completions_url(),
                json=payload,
                headers=self._headers(),
                timeout=self.settings.REQUEST_TIMEOUT
            )
            response.raise_for_status()
            result = response.json()
        except httpx.HTTPError as e:
            logger.error("LLM summary request failed", error=str(e))
            raise LLMServiceError(f"Model service request failed: {e}") from e
        except ValueError as e:
            raise LLMServiceError("Model service returned invalid JSON") from e

        choices = result.get("choices") or []
        content = (choices[0].get("message") or {}).get("content") if choices else None
        if not content:
            logger.error("Invalid response structure", response=str(result)[:500])
            raise LLMServiceError("Invalid response from model service")

        points = parse_response_to_points(content)
        logger.info("Summary generated", points_count=len(points))
        return points

    async def close(self):
        """Clean up resources"""
        await self.http_client.aclose()
