"""Configuration settings for the streamforge chat pipeline."""

import os
from typing import Optional

from dotenv import load_dotenv
from streamforge.exceptions import ConfigurationError
from streamforge.utils.logger import logger

# Load environment variables from .env file
load_dotenv()
logger.debug("Environment variables loaded from .env file")


class Settings:
    """Application settings loaded from environment variables."""

    # Default provider configuration
    DEFAULT_PROVIDER: str = os.getenv("DEFAULT_PROVIDER", "AzureOpenAI")
    MODEL_NAME: str = os.getenv("MODEL_NAME", "gpt-4o")
    LLM_TEMPERATURE: float = float(os.getenv("LLM_TEMPERATURE", "0.1"))
    MAX_TOKENS: int = int(os.getenv("MAX_TOKENS", "8000"))

    # Azure OpenAI Configuration
    AZURE_OPENAI_ENDPOINT: str = os.getenv("AZURE_OPENAI_ENDPOINT", "")
    OPENAI_API_KEY: str = os.getenv("OPENAI_API_KEY", "")
    AZURE_OPENAI_DEPLOYMENT: str = os.getenv("AZURE_OPENAI_DEPLOYMENT", "")
    AZURE_OPENAI_API_VERSION: str = os.getenv("AZURE_OPENAI_API_VERSION", "2024-02-15-preview")

    # Segmented streaming
    MAX_RESPONSE_SEGMENTS: int = int(os.getenv("MAX_RESPONSE_SEGMENTS", "2"))
    DEFAULT_MAX_LLM_STEPS: int = int(os.getenv("DEFAULT_MAX_LLM_STEPS", "10"))

    # Stall watchdog
    STREAM_STALL_TIMEOUT_SECONDS: float = float(os.getenv("STREAM_STALL_TIMEOUT_SECONDS", "45"))
    STREAM_STALL_MAX_RETRIES: int = int(os.getenv("STREAM_STALL_MAX_RETRIES", "2"))

    # Tool execution
    TOOL_TIMEOUT_SECONDS: float = float(os.getenv("TOOL_TIMEOUT_SECONDS", "30"))

    # Context optimization
    CONTEXT_MAX_FILES: int = int(os.getenv("CONTEXT_MAX_FILES", "5"))
    CONTEXT_RECENT_MESSAGES: int = int(os.getenv("CONTEXT_RECENT_MESSAGES", "3"))
    WORK_DIR: str = os.getenv("WORK_DIR", "/home/project")

    # Request validation
    # Header that identifies the calling client; must be present and non-empty
    CLIENT_HEADER: str = os.getenv("CLIENT_HEADER", "User-Agent")

    # Observability
    ENABLE_CORRELATION_IDS: bool = os.getenv("ENABLE_CORRELATION_IDS", "true").lower() == "true"
    MONITOR_RECENT_ERROR_WINDOW_SECONDS: int = int(os.getenv("MONITOR_RECENT_ERROR_WINDOW_SECONDS", "300"))
    MONITOR_RECOVERY_THRESHOLD: int = int(os.getenv("MONITOR_RECOVERY_THRESHOLD", "10"))

    # Server
    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = int(os.getenv("PORT", "5173"))

    def get_segment_cap(self, requested: Optional[int] = None) -> int:
        """
        Resolve the segment cap for a request.

        A request may lower the configured cap but never raise it.

        Args:
            requested: Optional cap supplied by the request

        Returns:
            Effective maximum number of provider segments
        """
        if requested is None or requested < 1:
            return self.MAX_RESPONSE_SEGMENTS
        return min(requested, self.MAX_RESPONSE_SEGMENTS)

    @classmethod
    def validate(cls) -> None:
        """Validate that the default provider can be constructed from the environment."""
        logger.debug("Validating configuration settings")

        if cls.DEFAULT_PROVIDER == "AzureOpenAI":
            if not cls.AZURE_OPENAI_ENDPOINT:
                logger.error("AZURE_OPENAI_ENDPOINT is not set")
                raise ConfigurationError(
                    "AZURE_OPENAI_ENDPOINT environment variable is required. "
                    "Set it in your .env file or environment. "
                    "Format: https://<your-resource-name>.openai.azure.com/"
                )
            if not cls.AZURE_OPENAI_DEPLOYMENT:
                logger.error("AZURE_OPENAI_DEPLOYMENT is not set")
                raise ConfigurationError(
                    "AZURE_OPENAI_DEPLOYMENT environment variable is required. "
                    "This should be the name of your Azure OpenAI deployment."
                )

        if not cls.OPENAI_API_KEY:
            # Clients may still supply keys per request through the apiKeys cookie
            logger.warning("OPENAI_API_KEY is not set; requests must carry their own API keys")

        if cls.MAX_RESPONSE_SEGMENTS < 1:
            raise ConfigurationError("MAX_RESPONSE_SEGMENTS must be at least 1")

        logger.info("Configuration validation successful")
        logger.debug(
            f"Configuration: provider={cls.DEFAULT_PROVIDER}, model={cls.MODEL_NAME}, "
            f"segments={cls.MAX_RESPONSE_SEGMENTS}, stall_timeout={cls.STREAM_STALL_TIMEOUT_SECONDS}s, "
            f"stall_retries={cls.STREAM_STALL_MAX_RETRIES}"
        )


# Global settings instance
settings = Settings()
