"""
AI Service for transaction categorization
Calls Google Gemini (generateContent) and constrains the answer to the user's category vocabulary
"""

import re
import json
import time
import asyncio
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional

import httpx

from backend.config import Settings
from .settings_store import SettingsStore

logger = logging.getLogger(__name__)

CATEGORY_PATTERN = re.compile(r'"category"\s*:\s*"([^"]+)"')
RETRY_DELAY_PATTERN = re.compile(r'"retryDelay"\s*:\s*"(\d+)(?:\.\d+)?s"')

DAILY_QUOTA_COOLDOWN = timedelta(hours=24)
QUOTA_COOLDOWN = timedelta(minutes=10)
RATE_LIMIT_COOLDOWN = timedelta(minutes=15)
RETRY_DELAY_BUFFER = timedelta(seconds=5)

DAILY_QUOTA_SIGNALS = ("perday", "requestsperday", "inputtokenspermodelperday")
QUOTA_SIGNALS = ("insufficient_quota", "resource_exhausted", "quota")
RATE_LIMIT_SIGNALS = ("rate limit", "too many requests", "rate_limit")


@dataclass(frozen=True)
class AiKeyTestResult:
    ok: bool
    code: str
    message: str


class RequestThrottle:
    """Process-wide minimum spacing between outbound AI requests."""

    def __init__(self, min_spacing_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.min_spacing = max(0.0, min_spacing_seconds)
        self._clock = clock
        self._lock = asyncio.Lock()
        self._next_allowed_at = 0.0

    async def wait(self):
        async with self._lock:
            delay = self._next_allowed_at - self._clock()
            if delay > 0:
                await asyncio.sleep(delay)
            self._next_allowed_at = self._clock() + self.min_spacing


def determine_429_cooldown(body: Optional[str]) -> timedelta:
    """
    Pick the cooldown for an HTTP 429 from the provider's error body.

    Daily quota exhaustion pauses AI for a day; an explicit retryDelay is
    honoured with a small buffer but never shorter than the quota cooldown.
    """
    raw = body or ""
    lower = raw.lower()
    if any(signal in lower for signal in DAILY_QUOTA_SIGNALS):
        return DAILY_QUOTA_COOLDOWN
    match = RETRY_DELAY_PATTERN.search(raw)
    if match and int(match.group(1)) > 0:
        return max(timedelta(seconds=int(match.group(1))) + RETRY_DELAY_BUFFER, QUOTA_COOLDOWN)
    if any(signal in lower for signal in QUOTA_SIGNALS):
        return QUOTA_COOLDOWN
    return RATE_LIMIT_COOLDOWN


def cooldown_for_error_text(message: Optional[str]) -> Optional[timedelta]:
    lower = (message or "").lower()
    if any(signal in lower for signal in QUOTA_SIGNALS):
        return QUOTA_COOLDOWN
    if any(signal in lower for signal in RATE_LIMIT_SIGNALS):
        return RATE_LIMIT_COOLDOWN
    return None


class AiClassifier:
    """
    Gemini-backed category classifier.

    Every failure is absorbed here: classify() returns None and the caller
    falls back to the keyword rules. Rate limits and quota errors pause the AI
    tier for everyone through the settings store.
    """

    def __init__(
        self,
        settings_store: SettingsStore,
        config: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.settings_store = settings_store
        self.config = config
        self.transport = transport
        self.throttle = RequestThrottle(config.ai_min_request_spacing_seconds)

    @property
    def api_key(self) -> str:
        return (self.config.gemini_api_key or "").strip()

    def is_available(self) -> bool:
        """True when a key is configured and AI is enabled and not cooling down."""
        return bool(self.api_key) and self.settings_store.is_ai_available()

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.config.gemini_base_url or "https://generativelanguage.googleapis.com",
            timeout=self.config.ai_request_timeout_seconds,
            transport=self.transport
        )

    async def classify(self, system_prompt: str, user_prompt: str, allowed_categories: List[str]) -> Optional[str]:
        """
        Ask Gemini for one category out of allowed_categories.

        Args:
            system_prompt: Instructions listing the allowed categories
            user_prompt: Transaction details
            allowed_categories: Vocabulary the answer must belong to

        Returns:
            Category in the vocabulary's own casing, or None when AI is
            unavailable, the call fails, or the answer is not in the vocabulary
        """
        if not self.api_key or not self.settings_store.is_ai_available():
            return None

        payload = {
            'contents': [
                {'parts': [{'text': self._build_prompt(system_prompt, user_prompt)}]}
            ],
            'generationConfig': {
                'temperature': 0.2,
                'maxOutputTokens': 80,
                'candidateCount': 1
            }
        }
        model = self.settings_store.ai_model()

        try:
            await self.throttle.wait()
            async with self._client() as client:
                response = await client.post(
                    f'/v1beta/models/{model}:generateContent',
                    params={'key': self.api_key},
                    json=payload
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as e:
            self._handle_status_error(e.response)
            return None
        except Exception as e:
            self._handle_error(e)
            return None

        content = self._extract_text(data)
        return self._extract_category(content, allowed_categories)

    async def test_api_key(self) -> AiKeyTestResult:
        """Check the configured key against the model listing endpoint."""
        if not self.api_key:
            return AiKeyTestResult(False, "missing_key", "Gemini API key ontbreekt.")
        try:
            async with self._client() as client:
                response = await client.get('/v1beta/models', params={'key': self.api_key})
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            return self._map_test_error(e.response.status_code, e.response.text)
        except httpx.HTTPError as e:
            logger.warning(f"Gemini key test could not reach the API: {e}")
            return AiKeyTestResult(False, "error", "Kon Gemini niet bereiken.")
        return AiKeyTestResult(True, "ok", "API key is geldig.")

    def _build_prompt(self, system_prompt: Optional[str], user_prompt: Optional[str]) -> str:
        return (system_prompt or "").strip() + "\n\n" + (user_prompt or "").strip()

    def _handle_status_error(self, response: httpx.Response):
        body = response.text or ""
        if response.status_code == 429:
            cooldown = determine_429_cooldown(body)
            self.settings_store.record_ai_failure(body, cooldown)
            logger.warning(f"Gemini categorization paused for {int(cooldown.total_seconds())}s due to 429")
            return
        logger.warning(f"Gemini categorization failed ({response.status_code}): {body[:200]}")

    def _handle_error(self, error: Exception):
        message = str(error) or error.__class__.__name__
        cooldown = cooldown_for_error_text(message)
        if cooldown is not None:
            self.settings_store.record_ai_failure(message, cooldown)
            logger.warning(f"Gemini categorization paused for {int(cooldown.total_seconds())}s: {message}")
            return
        logger.warning(f"Gemini categorization failed: {message}")

    def _map_test_error(self, status_code: int, body: Optional[str]) -> AiKeyTestResult:
        lower = (body or "").lower()
        if status_code == 401 or "invalid api key" in lower or "api_key_invalid" in lower:
            return AiKeyTestResult(False, "invalid_key", "Ongeldige Gemini API key.")
        if status_code == 429 and ("insufficient_quota" in lower or "resource_exhausted" in lower):
            return AiKeyTestResult(False, "quota", "Gemini quota is opgebruikt.")
        if status_code == 429:
            return AiKeyTestResult(False, "rate_limit", "Te veel aanvragen naar Gemini.")
        if status_code == 403:
            return AiKeyTestResult(False, "forbidden", "Geen toegang tot Gemini.")
        return AiKeyTestResult(False, "error", f"Gemini fout ({status_code}).")

    def _extract_text(self, data: Dict[str, Any]) -> Optional[str]:
        try:
            text = data['candidates'][0]['content']['parts'][0]['text']
        except (KeyError, IndexError, TypeError):
            return None
        if not isinstance(text, str) or not text.strip():
            return None
        return text

    def _extract_json_from_response(self, content: str) -> Optional[dict]:
        """Extract JSON from AI response, handling markdown code blocks"""
        content = content.strip()

        # Check for ```json ... ``` format
        if content.startswith('```'):
            lines = content.split('\n')
            if lines[0].startswith('```'):
                lines = lines[1:]
            if lines and lines[-1].strip() == '```':
                lines = lines[:-1]
            content = '\n'.join(lines)

        try:
            parsed = json.loads(content.strip())
        except json.JSONDecodeError:
            return None
        return parsed if isinstance(parsed, dict) else None

    def _extract_category(self, content: Optional[str], allowed_categories: List[str]) -> Optional[str]:
        if not content or not content.strip():
            return None
        trimmed = content.strip()

        parsed = self._extract_json_from_response(trimmed)
        if parsed is not None:
            return self._normalize_category(parsed.get('category'), allowed_categories)

        match = CATEGORY_PATTERN.search(trimmed)
        if match:
            return self._normalize_category(match.group(1), allowed_categories)
        return self._normalize_category(trimmed.replace('"', ''), allowed_categories)

    def _normalize_category(self, category: Any, allowed_categories: List[str]) -> Optional[str]:
        if not isinstance(category, str) or not category.strip() or not allowed_categories:
            return None
        wanted = category.strip().lower()
        for allowed in allowed_categories:
            if allowed.lower() == wanted:
                return allowed
        return None
