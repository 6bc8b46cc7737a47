"""
Configuration management for ragchat.
Loads from config/ragchat.yaml and environment variables.
"""

from pathlib import Path
from typing import Optional, Dict, Any, List
import yaml
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator


class MongoConfig(BaseSettings):
    """MongoDB (vCore) connection and vector search configuration."""
    connection: str = Field(default="mongodb://localhost:27017")
    database_name: str = Field(default="retaildb")
    completions_collection: str = Field(default="completions")
    collection_names: str = Field(default="products,customers,salesOrders")
    max_vector_search_results: int = Field(default=10)
    vector_index_type: str = Field(default="hnsw")  # hnsw, ivf
    vector_index_name: str = Field(default="vectorSearchIndex")
    vector_dimensions: int = Field(default=1536)

    model_config = SettingsConfigDict(env_prefix="MONGO_", extra="ignore")

    @field_validator("max_vector_search_results", mode="before")
    @classmethod
    def _default_on_garbage(cls, value: Any) -> int:
        try:
            return int(value)
        except (TypeError, ValueError):
            return 10

    @field_validator("vector_index_type")
    @classmethod
    def _known_index_type(cls, value: str) -> str:
        value = value.lower()
        if value not in ("hnsw", "ivf"):
            raise ValueError(f"Unsupported vector index type: {value}")
        return value

    @property
    def vector_collections(self) -> List[str]:
        return [name.strip() for name in self.collection_names.split(",") if name.strip()]


class LLMConfig(BaseSettings):
    """LLM provider configuration and token budgets."""
    provider: str = Field(default="openai")  # openai, anthropic
    openai_api_key: Optional[str] = Field(default=None, alias="OPENAI_API_KEY")
    anthropic_api_key: Optional[str] = Field(default=None, alias="ANTHROPIC_API_KEY")
    base_url: Optional[str] = Field(default=None)
    completion_model: str = Field(default="gpt-4o-mini")
    summarize_model: str = Field(default="gpt-4o-mini")
    temperature: float = Field(default=0.3)
    max_response_tokens: int = Field(default=1000)
    # Budget for the conversation window alone
    max_conversation_tokens: int = Field(default=1000)
    # Budget for documents + conversation + prompt in one generation call
    max_completion_tokens: int = Field(default=4000)
    buffer_tokens: int = Field(default=200)

    model_config = SettingsConfigDict(env_prefix="LLM_", extra="ignore", populate_by_name=True)


class EmbeddingConfig(BaseSettings):
    """Embedding model configuration."""
    provider: str = Field(default="openai")  # openai, local
    model: str = Field(default="text-embedding-ada-002", alias="EMBEDDING_MODEL")
    dimension: int = Field(default=1536)

    model_config = SettingsConfigDict(env_prefix="EMBEDDING_", extra="ignore", populate_by_name=True)


class TokenizerConfig(BaseSettings):
    """Tokenizer configuration. One encoding per process."""
    encoding: str = Field(default="cl100k_base")

    model_config = SettingsConfigDict(env_prefix="TOKENIZER_", extra="ignore")


class ApiConfig(BaseSettings):
    """API server configuration."""
    host: str = Field(default="0.0.0.0", alias="API_HOST")
    port: int = Field(default=8000, alias="API_PORT")
    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost:3000"])

    model_config = SettingsConfigDict(env_prefix="API_", extra="ignore", populate_by_name=True)


class RagChatSettings(BaseSettings):
    """Main ragchat configuration."""
    env: str = Field(default="dev", alias="RAGCHAT_ENV")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_file: Optional[Path] = Field(default=Path("logs/ragchat.log"), alias="LOG_FILE")

    # Sub-configurations
    api: ApiConfig = Field(default_factory=ApiConfig)
    mongo: MongoConfig = Field(default_factory=MongoConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    tokenizer: TokenizerConfig = Field(default_factory=TokenizerConfig)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
        extra="allow"
    )

    @classmethod
    def load_from_yaml(cls, config_path: Optional[Path] = None) -> "RagChatSettings":
        """Load settings from YAML file and merge with environment variables."""
        if config_path is None:
            config_path = Path("config/ragchat.yaml")

        config_dict: Dict[str, Any] = {}

        if config_path.exists():
            with open(config_path, "r", encoding="utf-8") as f:
                yaml_data = yaml.safe_load(f) or {}
                config_dict = yaml_data.get("ragchat", {})

        return cls(**config_dict)


# Global settings instance
_settings: Optional[RagChatSettings] = None


def get_settings() -> RagChatSettings:
    """Get or create global settings instance."""
    global _settings
    if _settings is None:
        _settings = RagChatSettings.load_from_yaml()
    return _settings


# Alias for convenience
settings = get_settings()
