"""
Correctness oracle adapters.

The oracle judges a free-text guess against the correct answer. Adapters
raise OracleUnavailableError on any transport or parsing failure; the answer
validation pipeline owns the exact-match fallback, so adapters never guess.
"""

import json
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import httpx

from puzzlebot.config import Config
from puzzlebot.constants import OracleConstants
from puzzlebot.utils.exceptions import OracleUnavailableError
from puzzlebot.utils.word_matcher import WordMatcher

logger = logging.getLogger(__name__)

VALIDATION_PROMPT = """You are an answer validator for a word puzzle game.

Given:
- The correct answer
- A user's submitted guess

Determine if the guess should be accepted as correct.

Acceptance criteria:
- Exact matches (case-insensitive) are always correct
- Plural/singular variations should be accepted
- Minor typos (1-2 character differences) should be accepted
- Semantically equivalent phrases should be accepted
- Common abbreviations related to the answer should be accepted

Rejection criteria:
- Completely different words/phrases
- Guesses that are only tangentially related
- Overly generic guesses

Respond with JSON:
{
  "is_correct": true/false,
  "confidence": 0.0-1.0,
  "reasoning": "brief explanation",
  "corrected_answer": "the correct answer if the guess had a typo, else null"
}"""

JSON_OBJECT = re.compile(r'\{[\s\S]*\}')


@dataclass(frozen=True)
class OracleVerdict:
    is_correct: bool
    confidence: float
    explanation: str
    corrected_spelling: Optional[str] = None


class CorrectnessOracle(ABC):
    """Judges whether a guess matches the correct answer."""

    name = 'oracle'

    @abstractmethod
    async def validate(self, correct_answer: str, guess: str) -> OracleVerdict:
        ...

    async def close(self):
        pass


class RuleBasedOracle(CorrectnessOracle):
    """Offline oracle: exact match, or the whole answer within a small typo distance."""

    name = 'mock'

    async def validate(self, correct_answer: str, guess: str) -> OracleVerdict:
        correct = correct_answer.lower().strip()
        normalized = guess.lower().strip()

        if correct == normalized:
            return OracleVerdict(True, 1.0, 'Exact match')

        distance = WordMatcher.levenshtein_distance(correct, normalized)
        if (distance <= OracleConstants.RULE_BASED_MAX_DISTANCE
                and len(normalized) >= OracleConstants.RULE_BASED_MIN_GUESS_LENGTH):
            return OracleVerdict(True, OracleConstants.TYPO_CONFIDENCE, 'Minor typo detected', correct_answer)

        return OracleVerdict(False, 1.0, 'Answer does not match')


def parse_verdict(content: str, provider: str) -> OracleVerdict:
    """Parse a model's JSON verdict, tolerating prose around the object"""
    if not content:
        raise OracleUnavailableError(provider, 'empty response')

    try:
        parsed = json.loads(content)
    except json.JSONDecodeError:
        match = JSON_OBJECT.search(content)
        if not match:
            raise OracleUnavailableError(provider, 'response is not JSON')
        try:
            parsed = json.loads(match.group(0))
        except json.JSONDecodeError as e:
            raise OracleUnavailableError(provider, f'invalid JSON: {e}')

    if not isinstance(parsed, dict) or not isinstance(parsed.get('is_correct'), bool):
        raise OracleUnavailableError(provider, 'verdict missing is_correct')

    try:
        confidence = float(parsed.get('confidence', 0.5))
    except (TypeError, ValueError):
        confidence = 0.5

    return OracleVerdict(
        is_correct=parsed['is_correct'],
        confidence=max(0.0, min(1.0, confidence)),
        explanation=parsed.get('reasoning') or 'Judged by model',
        corrected_spelling=parsed.get('corrected_answer') or None
    )


def _user_prompt(correct_answer: str, guess: str) -> str:
    return f'Correct answer: "{correct_answer}"\nUser\'s guess: "{guess}"\n\nRespond with JSON only.'


class HttpOracle(CorrectnessOracle):
    """Shared httpx plumbing for model-backed oracles."""

    def __init__(self, client: Optional[httpx.AsyncClient] = None, timeout: Optional[float] = None):
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout or Config.ORACLE_TIMEOUT_SECONDS)

    async def _post_json(self, url: str, payload: dict, headers: Optional[dict] = None) -> dict:
        try:
            response = await self.client.post(url, json=payload, headers=headers)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPError as e:
            raise OracleUnavailableError(self.name, str(e))
        except ValueError as e:
            raise OracleUnavailableError(self.name, f'invalid response body: {e}')

    async def close(self):
        if self._owns_client:
            await self.client.aclose()


class OpenRouterOracle(HttpOracle):
    """Chat-completions oracle served through OpenRouter."""

    name = 'openrouter'

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None,
                 url: Optional[str] = None, client: Optional[httpx.AsyncClient] = None):
        self.api_key = api_key or Config.OPENROUTER_API_KEY
        if not self.api_key:
            raise ValueError("OPENROUTER_API_KEY or AI_API_KEY required for OpenRouter oracle")
        super().__init__(client)
        self.model = model or Config.OPENROUTER_MODEL
        self.url = url or Config.OPENROUTER_URL

    async def validate(self, correct_answer: str, guess: str) -> OracleVerdict:
        data = await self._post_json(
            self.url,
            {
                'model': self.model,
                'messages': [
                    {'role': 'system', 'content': VALIDATION_PROMPT},
                    {'role': 'user', 'content': _user_prompt(correct_answer, guess)},
                ],
            },
            headers={'Authorization': f'Bearer {self.api_key}'}
        )

        try:
            content = data['choices'][0]['message']['content']
        except (KeyError, IndexError, TypeError):
            raise OracleUnavailableError(self.name, 'no content in response')

        return parse_verdict(content, self.name)


class OllamaOracle(HttpOracle):
    """Local model oracle served by an Ollama instance."""

    name = 'local'

    def __init__(self, base_url: Optional[str] = None, model: Optional[str] = None,
                 client: Optional[httpx.AsyncClient] = None):
        super().__init__(client)
        self.base_url = (base_url or Config.LOCAL_MODEL_URL).rstrip('/')
        self.model = model or Config.LOCAL_MODEL_NAME

    async def check_health(self) -> bool:
        """Whether the server is up and has the configured model pulled"""
        try:
            response = await self.client.get(f'{self.base_url}/api/tags')
            response.raise_for_status()
            models = [m.get('name', '') for m in response.json().get('models', [])]
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Ollama health check failed: {e}")
            return False

        if not any(self.model in name for name in models):
            logger.warning(f"Model '{self.model}' not found in Ollama, available: {models}")
            return False
        return True

    async def validate(self, correct_answer: str, guess: str) -> OracleVerdict:
        data = await self._post_json(
            f'{self.base_url}/api/chat',
            {
                'model': self.model,
                'messages': [
                    {'role': 'system', 'content': VALIDATION_PROMPT},
                    {'role': 'user', 'content': _user_prompt(correct_answer, guess)},
                ],
                'stream': False,
                'format': 'json',
            }
        )

        content = (data.get('message') or {}).get('content') if isinstance(data, dict) else None
        return parse_verdict(content, self.name)


def create_oracle(provider: Optional[str] = None) -> CorrectnessOracle:
    """Build the configured oracle adapter"""
    provider = provider or Config.ORACLE_PROVIDER

    if provider == 'mock':
        return RuleBasedOracle()
    if provider == 'openrouter':
        return OpenRouterOracle()
    if provider == 'local':
        return OllamaOracle()

    raise ValueError(f"Unknown oracle provider: {provider}")
