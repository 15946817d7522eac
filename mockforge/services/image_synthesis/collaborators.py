"""
Interfaces the pipeline consumes but does not implement itself.

Both collaborators may raise; the pipeline treats every error they raise as
a soft failure (see ImageSynthesisPipeline).
"""

from abc import ABC, abstractmethod
from typing import Dict

from .models import GeneratedImage, PromptPlanRequest


class ImageGenerator(ABC):
    """Produces one image for one prompt."""

    @abstractmethod
    async def generate(self, prompt: str, preferred_model: str) -> GeneratedImage:
        pass


class PromptPlanner(ABC):
    """Rewrites a batch of intent prompts for consistency across screens."""

    @abstractmethod
    async def plan_prompts(self, request: PromptPlanRequest) -> Dict[str, str]:
        """Return ``{intent_id: prompt}``; ids missing from the result keep their prompt."""
