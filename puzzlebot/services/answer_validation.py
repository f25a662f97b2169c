"""
Answer validation pipeline: significant-word pre-filter, then the correctness
oracle under a timeout, degrading to case-insensitive exact match.
"""

import asyncio
import logging
from typing import Optional

from puzzlebot.config import Config
from puzzlebot.data_models.profile import ValidationOutcome
from puzzlebot.services.oracle import CorrectnessOracle
from puzzlebot.utils.exceptions import OracleUnavailableError
from puzzlebot.utils.word_matcher import WordMatcher

logger = logging.getLogger(__name__)


def exact_match(correct_answer: str, guess: str) -> bool:
    return correct_answer.strip().lower() == guess.strip().lower()


class AnswerValidator:
    """Runs one guess through the validation pipeline; the oracle is called at most once."""

    def __init__(self, oracle: CorrectnessOracle, timeout: Optional[float] = None):
        self.oracle = oracle
        self.timeout = timeout if timeout is not None else Config.ORACLE_TIMEOUT_SECONDS

    async def validate(self, correct_answer: str, guess: str) -> ValidationOutcome:
        missing = WordMatcher.missing_significant_words(correct_answer, guess)
        if missing:
            noun = 'word' if len(missing) == 1 else 'words'
            return ValidationOutcome(
                is_correct=False,
                explanation=f"Your guess is missing {len(missing)} required {noun} from the answer.",
                confidence=1.0,
                rejected_by_prefilter=True
            )

        try:
            verdict = await asyncio.wait_for(
                self.oracle.validate(correct_answer, guess),
                timeout=self.timeout
            )
        except asyncio.TimeoutError:
            logger.warning(f"Oracle '{self.oracle.name}' timed out after {self.timeout}s, using exact match")
            return self._fallback(correct_answer, guess)
        except OracleUnavailableError as e:
            logger.warning(f"{e}, using exact match")
            return self._fallback(correct_answer, guess)
        except Exception as e:
            logger.error(f"Oracle '{self.oracle.name}' failed unexpectedly: {e}", exc_info=True)
            return self._fallback(correct_answer, guess)

        return ValidationOutcome(
            is_correct=verdict.is_correct,
            explanation=verdict.explanation,
            confidence=verdict.confidence,
            corrected_spelling=verdict.corrected_spelling
        )

    @staticmethod
    def _fallback(correct_answer: str, guess: str) -> ValidationOutcome:
        is_correct = exact_match(correct_answer, guess)
        return ValidationOutcome(
            is_correct=is_correct,
            explanation='Fallback to exact match',
            confidence=1.0 if is_correct else 0.0,
            used_fallback=True
        )
