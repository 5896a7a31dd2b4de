"""
Factory for creating body composition estimator instances.

Reads configuration from Settings and returns the appropriate provider.
"""

import logging

from bodyscan_api.core.config import EstimatorProvider, Settings

from .base import BodyCompositionEstimator, EstimatorError
from .llm import get_chat_model, get_model_name
from .llm_provider import LLMBodyCompositionEstimator, PhotoLoader

logger = logging.getLogger(__name__)


# Supported providers; both are served through LangChain chat models
PROVIDERS = {
    EstimatorProvider.GEMINI.value: LLMBodyCompositionEstimator,
    EstimatorProvider.OPENAI.value: LLMBodyCompositionEstimator,
}


def get_estimator(
    settings: Settings,
    photo_loader: PhotoLoader | None = None,
) -> BodyCompositionEstimator:
    """
    Build the configured body composition estimator.

    Args:
        settings: Application settings
        photo_loader: Reader for photo URLs the estimator cannot fetch over HTTP

    Returns:
        Configured BodyCompositionEstimator instance

    Raises:
        EstimatorError: If provider is not supported or configuration is invalid
    """
    provider_name = settings.estimator_provider.value

    logger.info(f"Initializing body composition estimator: {provider_name}")

    if provider_name not in PROVIDERS:
        raise EstimatorError(
            message=f"Unknown estimator provider: {provider_name}",
            error_code="INVALID_PROVIDER",
            provider=provider_name,
            details={"supported_providers": list(PROVIDERS.keys())},
        )

    try:
        chat_model = get_chat_model(settings)
        qc_model = get_chat_model(settings, for_qc=True)
    except ValueError as e:
        raise EstimatorError(
            message=str(e),
            error_code="NOT_CONFIGURED",
            provider=provider_name,
        ) from e

    model_name = get_model_name(settings)
    logger.info(
        f"Configuring {provider_name} estimator: model={model_name}, "
        f"qc_model={get_model_name(settings, for_qc=True)}"
    )

    return PROVIDERS[provider_name](
        chat_model=chat_model,
        model_name=model_name,
        qc_model=qc_model,
        photo_loader=photo_loader,
        timeout=settings.photo_fetch_timeout,
    )
