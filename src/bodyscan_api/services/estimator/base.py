"""
Base classes and models for body composition estimation.

Defines the abstract interface that all estimator providers must implement,
plus the standardized estimate model.
"""

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, Field

from bodyscan_api.models.scan import QualityCheckResult, UserContext


class BodyCompositionEstimate(BaseModel):
    """Body composition metrics returned by an estimator."""

    bf_percent: float = Field(..., description="Body fat as a fraction (0.185 for 18.5%)")
    lbm_lb: float | None = Field(None, description="Lean body mass reported by the model, if any")
    muscle_percent: float | None = Field(None, description="Estimated muscle percentage (20-55)")
    posture_score: float | None = Field(None, ge=0, le=100)
    confidence: float = Field(..., ge=0.0, le=1.0)
    model_version: str = Field(..., description="Model that produced the estimate")
    notes: str | None = None


class EstimatorError(Exception):
    """Error during quality check or estimation."""

    def __init__(
        self,
        message: str,
        error_code: str = "ESTIMATION_ERROR",
        provider: str = "unknown",
        details: dict[str, Any] | None = None,
        transient: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.provider = provider
        self.details = details or {}
        # Network and rate-limit failures; safe to retry
        self.transient = transient


class BodyCompositionEstimator(ABC):
    """
    Abstract base class for body composition estimators.

    All providers (Gemini, OpenAI, ...) must implement this interface.
    Photos are passed as a mapping of angle value -> URL.
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the name of this provider."""
        ...

    @abstractmethod
    async def quality_check(self, angle_urls: dict[str, str]) -> QualityCheckResult:
        """
        Run the lightweight photo quality check.

        Args:
            angle_urls: URL per angle (front, back, left, right)

        Returns:
            QualityCheckResult with verdict, issues and confidence

        Raises:
            EstimatorError: If the provider cannot be reached
        """
        ...

    @abstractmethod
    async def estimate(
        self,
        angle_urls: dict[str, str],
        weight_lb: float,
        context: UserContext | None = None,
    ) -> BodyCompositionEstimate:
        """
        Estimate body composition from the four angle photos.

        Args:
            angle_urls: URL per angle (front, back, left, right)
            weight_lb: User-entered weight in pounds
            context: Optional profile context (age, gender, height, goal)

        Returns:
            BodyCompositionEstimate

        Raises:
            EstimatorError: If no usable estimate could be produced
        """
        ...

    async def health_check(self) -> bool:
        """
        Check if the provider is available.

        Returns:
            True if provider is ready, False otherwise
        """
        return True

    async def close(self) -> None:
        """Release provider resources."""
        return None
