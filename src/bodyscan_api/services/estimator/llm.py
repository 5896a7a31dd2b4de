"""Chat model factory for multi-provider support."""

from langchain_core.language_models import BaseChatModel

from bodyscan_api.core.config import EstimatorProvider, Settings, get_settings


def get_chat_model(settings: Settings | None = None, *, for_qc: bool = False) -> BaseChatModel:
    """
    Get configured multimodal chat model based on settings.

    Supports Google Gemini and OpenAI providers.

    Args:
        settings: Application settings (uses default if not provided)
        for_qc: Return the cheaper model used for the photo quality check

    Returns:
        Configured chat model instance

    Raises:
        ValueError: If provider is not configured or unsupported
    """
    if settings is None:
        settings = get_settings()

    match settings.estimator_provider:
        case EstimatorProvider.GEMINI:
            return _get_gemini(settings, for_qc)
        case EstimatorProvider.OPENAI:
            return _get_openai(settings)
        case _:
            raise ValueError(f"Unsupported estimator provider: {settings.estimator_provider}")


def get_model_name(settings: Settings, *, for_qc: bool = False) -> str:
    """Model identifier recorded on estimates."""
    if settings.estimator_provider == EstimatorProvider.GEMINI:
        return settings.gemini_qc_model if for_qc else settings.gemini_model
    return settings.openai_model


def _get_openai(settings: Settings) -> BaseChatModel:
    """Get OpenAI chat model."""
    from langchain_openai import ChatOpenAI

    if not settings.openai_api_key:
        raise ValueError(
            "OpenAI API key not configured. "
            "Set OPENAI_API_KEY in your .env file."
        )

    return ChatOpenAI(
        model=settings.openai_model,
        api_key=settings.openai_api_key,
        temperature=settings.llm_temperature,
    )


def _get_gemini(settings: Settings, for_qc: bool) -> BaseChatModel:
    """Get Google Gemini chat model."""
    from langchain_google_genai import ChatGoogleGenerativeAI

    if not settings.google_api_key:
        raise ValueError(
            "Google API key not configured. "
            "Set GOOGLE_API_KEY in your .env file."
        )

    return ChatGoogleGenerativeAI(
        model=get_model_name(settings, for_qc=for_qc),
        google_api_key=settings.google_api_key,
        temperature=settings.llm_temperature,
    )


def get_estimator_info(settings: Settings | None = None) -> dict:
    """
    Get information about the configured estimator.

    Returns:
        Dict with provider info
    """
    if settings is None:
        settings = get_settings()

    return {
        "provider": settings.estimator_provider.value,
        "model": get_model_name(settings),
        "qc_model": get_model_name(settings, for_qc=True),
        "configured": settings.is_estimator_configured,
        "temperature": settings.llm_temperature,
    }
