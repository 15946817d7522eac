"""
Services layer for Mockforge.

Provides the Gemini API wrapper (GeminiService) and the image synthesis
pipeline that turns placeholder <img> tags into generated images.
"""

from .gemini_service import GeminiService, RateLimitError

__all__ = ['GeminiService', 'RateLimitError']
