"""Per-request chat-model construction for Azure OpenAI and OpenAI."""

from typing import Optional

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_openai import AzureChatOpenAI, ChatOpenAI

from streamforge.chat.models import Credentials
from streamforge.config.settings import settings
from streamforge.exceptions import ProviderError
from streamforge.providers.langchain_provider import LangChainProvider
from streamforge.utils.logger import logger

AZURE_PROVIDER = "AzureOpenAI"
OPENAI_PROVIDER = "OpenAI"
SUPPORTED_PROVIDERS = (AZURE_PROVIDER, OPENAI_PROVIDER)


def _resolve_api_key(credentials: Credentials, provider_name: str) -> str:
    api_key = credentials.api_keys.get(provider_name) or settings.OPENAI_API_KEY
    if not api_key:
        raise ProviderError(f"Missing API key for provider {provider_name}", provider=provider_name, status_code=401)
    return api_key


def create_chat_model(
    credentials: Credentials,
    model: Optional[str] = None,
    provider_name: Optional[str] = None,
) -> BaseChatModel:
    """
    Create a streaming chat model for one request.

    Args:
        credentials: API keys and provider settings from the request cookies
        model: Model (or Azure deployment) name; falls back to settings
        provider_name: "AzureOpenAI" or "OpenAI"; falls back to settings

    Returns:
        Configured LangChain chat model with streaming and usage reporting enabled

    Raises:
        ProviderError: If the provider is unsupported or no API key is available
    """
    provider_name = provider_name or settings.DEFAULT_PROVIDER
    model = model or settings.MODEL_NAME
    if provider_name not in SUPPORTED_PROVIDERS:
        raise ProviderError(f"Unsupported provider: {provider_name}", provider=provider_name, status_code=400)

    api_key = _resolve_api_key(credentials, provider_name)
    overrides = credentials.provider_settings.get(provider_name, {})
    logger.info(f"Creating {provider_name} chat model: model={model}")

    if provider_name == AZURE_PROVIDER:
        endpoint = overrides.get("baseUrl") or settings.AZURE_OPENAI_ENDPOINT
        if not endpoint:
            raise ProviderError("Missing Azure OpenAI endpoint", provider=provider_name, status_code=400)
        # Normalize Azure endpoint URL (ensure it ends with a trailing slash)
        endpoint = endpoint.rstrip("/") + "/"
        deployment = overrides.get("deployment") or settings.AZURE_OPENAI_DEPLOYMENT or model
        logger.debug(
            f"Client configuration: endpoint={endpoint[:50]}..., "
            f"deployment={deployment}, "
            f"api_version={settings.AZURE_OPENAI_API_VERSION}"
        )
        return AzureChatOpenAI(
            azure_endpoint=endpoint,
            azure_deployment=deployment,
            api_key=api_key,
            api_version=overrides.get("apiVersion") or settings.AZURE_OPENAI_API_VERSION,
            streaming=True,
            stream_usage=True,
            temperature=settings.LLM_TEMPERATURE,
            max_tokens=settings.MAX_TOKENS,
        )

    return ChatOpenAI(
        model=model,
        api_key=api_key,
        base_url=overrides.get("baseUrl") or None,
        streaming=True,
        stream_usage=True,
        temperature=settings.LLM_TEMPERATURE,
        max_tokens=settings.MAX_TOKENS,
    )


def create_provider(
    credentials: Credentials,
    model: Optional[str] = None,
    provider_name: Optional[str] = None,
) -> LangChainProvider:
    provider_name = provider_name or settings.DEFAULT_PROVIDER
    chat_model = create_chat_model(credentials, model=model, provider_name=provider_name)
    logger.success(f"{provider_name} provider ready")
    return LangChainProvider(chat_model, name=provider_name)
