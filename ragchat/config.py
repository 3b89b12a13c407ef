"""Configuration management for the RagChat application."""

import logging
import os
from pathlib import Path

from dotenv import load_dotenv

env_path = Path(__file__).parent.parent / ".env"

if env_path.exists():
    load_dotenv(env_path)


class Config:
    """Application configuration loaded from environment variables."""

    # LLM Gateway Configuration
    @classmethod
    def get_llm_api_key(cls) -> str:
        """Get the LLM gateway API key from environment variables.

        Returns:
            Gateway API key, falling back to OPENAI_API_KEY, or empty string.
        """
        return os.getenv("LLM_API_KEY") or os.getenv("OPENAI_API_KEY", "")

    LLM_BASE_URL: str | None = os.getenv("LLM_BASE_URL", "https://api.berget.ai/v1")

    # Embedding Configuration
    @classmethod
    def get_embedding_api_key(cls) -> str:
        """Get the embedding service API key from environment variables.

        Returns:
            Embedding API key, falling back to OPENAI_API_KEY, or empty string.
        """
        return os.getenv("EMBEDDING_API_KEY") or os.getenv("OPENAI_API_KEY", "")

    EMBEDDING_BASE_URL: str | None = os.getenv("EMBEDDING_BASE_URL")
    EMBEDDING_MODEL: str = os.getenv("EMBEDDING_MODEL", "text-embedding-3-small")
    EMBEDDING_BATCH_SIZE: int = int(os.getenv("EMBEDDING_BATCH_SIZE", "100"))

    # Logging Configuration
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
    OPENAI_LOG_LEVEL: str = os.getenv("OPENAI_LOG_LEVEL", "WARNING").upper()
    HTTPX_LOG_LEVEL: str = os.getenv("HTTPX_LOG_LEVEL", "WARNING").upper()

    # Application Settings
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")

    # Chunking and Retrieval Configuration
    CHUNK_SIZE: int = int(os.getenv("CHUNK_SIZE", "300"))
    CHUNK_OVERLAP: int = int(os.getenv("CHUNK_OVERLAP", "50"))
    SEARCH_TOP_K: int = int(os.getenv("SEARCH_TOP_K", "5"))

    # Chat Model Configuration
    CHAT_MAX_TOKENS: int = int(os.getenv("CHAT_MAX_TOKENS", "2000"))
    CHAT_TEMPERATURE: float = float(os.getenv("CHAT_TEMPERATURE", "0.7"))
    TOOL_MODEL_MARKER: str = os.getenv("TOOL_MODEL_MARKER", "Llama")

    # Title Generation Configuration
    TITLE_MODEL: str = os.getenv("TITLE_MODEL", "meta-llama/Llama-3.3-70B-Instruct")
    TITLE_MAX_TOKENS: int = int(os.getenv("TITLE_MAX_TOKENS", "20"))

    # Speech-to-text Configuration
    TRANSCRIBE_MODEL: str = os.getenv("TRANSCRIBE_MODEL", "KBLab/kb-whisper-large")

    # Web Search Configuration
    TAVILY_API_KEY: str = os.getenv("TAVILY_API_KEY", "")
    SEARCH_API_URL: str = os.getenv("SEARCH_API_URL", "https://api.tavily.com/search")
    SEARCH_TIMEOUT: float = float(os.getenv("SEARCH_TIMEOUT", "20"))
    SEARCH_MAX_RESULTS: int = int(os.getenv("SEARCH_MAX_RESULTS", "5"))

    # External Tool (MCP) Configuration
    MCP_SERVER_URL: str = os.getenv("MCP_SERVER_URL", "")
    MCP_AUTH_TOKEN: str | None = os.getenv("MCP_AUTH_TOKEN")
    MCP_BRIDGE_COMMAND: str = os.getenv("MCP_BRIDGE_COMMAND", "npx mcp-remote")
    MCP_TIMEOUT: float = float(os.getenv("MCP_TIMEOUT", "45"))
    MCP_CACHE_TTL: float = float(os.getenv("MCP_CACHE_TTL", "300"))
    MCP_TOOL_PREFIX: str = os.getenv("MCP_TOOL_PREFIX", "mcp_")

    # Record Store Configuration
    NOCODB_API_URL: str = os.getenv("NOCODB_API_URL", "")
    NOCODB_API_TOKEN: str = os.getenv("NOCODB_API_TOKEN", "")
    NOCODB_BASE_NAME: str = os.getenv("NOCODB_BASE_NAME", "RagChat")
    RECORD_STORE_TIMEOUT: float = float(os.getenv("RECORD_STORE_TIMEOUT", "10"))

    # API Header Configuration
    API_USER_AGENT: str = os.getenv("API_USER_AGENT", "RagChat/1.0")

    @classmethod
    def validate(cls) -> None:
        """Validate required configuration values.

        Raises:
            ValueError: If no LLM gateway API key is set.
        """
        if not cls.get_llm_api_key():
            msg = "LLM_API_KEY is required. Please set it in .env file or environment."
            raise ValueError(msg)

    @classmethod
    def mcp_enabled(cls) -> bool:
        """Check if an external tool provider is configured.

        Returns:
            True if MCP_SERVER_URL is set.
        """
        return bool(cls.MCP_SERVER_URL)

    @classmethod
    def persistence_enabled(cls) -> bool:
        """Check if the external record store is configured.

        Returns:
            True if NOCODB_API_URL is set.
        """
        return bool(cls.NOCODB_API_URL)

    @classmethod
    def setup_logging(cls) -> None:
        """Setup basic logging configuration.

        Configure logging once at application startup with:
        - Console output for all levels
        - Simple, readable format
        - Configurable level via environment variable
        """
        logging.basicConfig(
            level=getattr(logging, cls.LOG_LEVEL, logging.INFO),
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%H:%M:%S",
        )

        # Configure third-party library log levels via environment variables
        logging.getLogger("openai").setLevel(
            getattr(logging, cls.OPENAI_LOG_LEVEL, logging.WARNING)
        )
        logging.getLogger("httpx").setLevel(
            getattr(logging, cls.HTTPX_LOG_LEVEL, logging.WARNING)
        )

    @classmethod
    def get_logger(cls, name: str) -> logging.Logger:
        """Get a logger with the specified name.

        Args:
            name: Logger name (typically __name__)

        Returns:
            Logger instance
        """
        return logging.getLogger(name)

    @classmethod
    def get_api_headers(cls) -> dict[str, str]:
        """Build default headers for outbound API calls.

        Returns:
            Mapping of header names to values used on outbound HTTP requests.
        """
        headers: dict[str, str] = {}

        if cls.API_USER_AGENT:
            headers["User-Agent"] = cls.API_USER_AGENT

        return headers


config = Config()
