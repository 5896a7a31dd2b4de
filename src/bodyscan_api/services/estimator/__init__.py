"""
Body Composition Estimator - provider abstraction for the AI vision collaborator.

Gemini and OpenAI multimodal chat models are served through LangChain.
"""

from .base import BodyCompositionEstimate, BodyCompositionEstimator, EstimatorError
from .factory import get_estimator
from .llm_provider import LLMBodyCompositionEstimator, normalize_bf_fraction

__all__ = [
    "BodyCompositionEstimate",
    "BodyCompositionEstimator",
    "EstimatorError",
    "LLMBodyCompositionEstimator",
    "get_estimator",
    "normalize_bf_fraction",
]
