"""
Celebration asset providers.

fetch_celebration never raises: any failure yields one of the static GIFs.
"""

import logging
import random
from abc import ABC, abstractmethod
from typing import Optional

import httpx

from puzzlebot.config import Config
from puzzlebot.constants import CelebrationConstants, MoodConstants

logger = logging.getLogger(__name__)


class CelebrationProvider(ABC):
    @abstractmethod
    async def fetch_celebration(self, tier: int) -> str:
        ...

    async def close(self):
        pass


class StaticCelebrationProvider(CelebrationProvider):
    """Picks from the bundled fallback GIFs."""

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    async def fetch_celebration(self, tier: int) -> str:
        return self.rng.choice(CelebrationConstants.FALLBACK_GIFS)


class GiphyCelebrationProvider(CelebrationProvider):
    """Random Giphy GIF tagged with a term matching the tier's intensity."""

    def __init__(self, api_key: Optional[str] = None, client: Optional[httpx.AsyncClient] = None,
                 rng: Optional[random.Random] = None):
        self.api_key = api_key or Config.GIPHY_API_KEY
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=Config.CELEBRATION_TIMEOUT_SECONDS)
        self.rng = rng or random.Random()
        self.fallback = StaticCelebrationProvider(self.rng)

    @staticmethod
    def search_terms_for(tier: int):
        tier = max(MoodConstants.MIN_TIER, min(MoodConstants.MAX_TIER, tier))
        return CelebrationConstants.TIER_SEARCH_TERMS.get(tier, CelebrationConstants.TIER_SEARCH_TERMS[2])

    async def fetch_celebration(self, tier: int) -> str:
        if not self.api_key:
            return await self.fallback.fetch_celebration(tier)

        tag = self.rng.choice(self.search_terms_for(tier))
        try:
            response = await self.client.get(
                CelebrationConstants.GIPHY_RANDOM_URL,
                params={'api_key': self.api_key, 'tag': tag, 'rating': 'g'}
            )
            response.raise_for_status()
            return response.json()['data']['images']['downsized']['url']
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Giphy lookup for tier {tier} ('{tag}') failed: {e}, using static GIF")
            return await self.fallback.fetch_celebration(tier)

    async def close(self):
        if self._owns_client:
            await self.client.aclose()


def create_celebration_provider() -> CelebrationProvider:
    if Config.GIPHY_API_KEY:
        return GiphyCelebrationProvider()
    return StaticCelebrationProvider()
