"""Configuration management with environment variables and CLI overrides."""

from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from rich.console import Console
from rich.table import Table

# ---------------------------------------------------------------------------
# Sub-config models
# ---------------------------------------------------------------------------


class LLMConfig(BaseSettings):
    """LLM/OpenAI configuration."""

    model_config = SettingsConfigDict(env_prefix="OPENAI_")

    api_key: str = Field(default="", description="OpenAI API key")
    base_url: str = Field(default="https://api.openai.com/v1", description="API base URL")
    model: str = Field(default="gpt-4.1-mini", description="Model name")
    max_tokens: int = Field(default=4096, description="Max tokens per request")
    temperature: float = Field(default=0.3, description="Temperature for generation")
    timeout_seconds: float = Field(default=90.0, description="Upper bound for one provider call")


class TaskLLMConfig(BaseSettings):
    """Base class for task-specific LLM overrides.

    Empty fields fall back to the default LLM config.
    """

    api_key: str = Field(default="", description="API key")
    base_url: str = Field(default="", description="API base URL")
    model: str = Field(default="", description="Model name")
    max_tokens: int = Field(default=0, description="Max tokens per request")
    temperature: float = Field(default=0.0, description="Temperature")


class TranslatorLLMConfig(TaskLLMConfig):
    """LLM configuration for batch translation."""

    model_config = SettingsConfigDict(env_prefix="TRANSLATOR_LLM_")


class CriticLLMConfig(TaskLLMConfig):
    """LLM configuration for the draft/critique/fix loop."""

    model_config = SettingsConfigDict(env_prefix="CRITIC_LLM_")


class EmbeddingConfig(BaseSettings):
    """Embedding generator configuration."""

    model_config = SettingsConfigDict(env_prefix="EMBEDDING_")

    api_key: str = Field(default="", description="API key (falls back to OPENAI_API_KEY)")
    base_url: str = Field(default="", description="API base URL (falls back to OPENAI_BASE_URL)")
    model: str = Field(default="text-embedding-3-small", description="Embedding model")
    dimensions: int = Field(default=1536, description="Vector dimension shared by the corpus")
    cache_ttl_seconds: int = Field(default=7 * 24 * 3600, description="Embedding cache TTL")
    cache_max_size: int = Field(default=10000, description="Max cached embeddings")
    batch_size: int = Field(default=100, description="Texts per embeddings API call")
    backfill_batch_size: int = Field(default=50, description="Records per backfill step")


class RetrievalConfig(BaseSettings):
    """Translation memory search configuration."""

    model_config = SettingsConfigDict(env_prefix="TM_")

    default_limit: int = Field(default=25, description="Default number of candidates")
    max_limit: int = Field(default=100, description="Upper bound for the limit parameter")
    default_min_score: int = Field(default=50, description="Default fuzzy score floor (0-100)")
    default_vector_similarity: int = Field(
        default=50, description="Default vector similarity floor (0-100)"
    )

    # Fuzzy pre-filters per search mode
    basic_length_threshold: float = Field(
        default=0.4, description="Max relative length difference in basic mode"
    )
    basic_word_overlap: float = Field(
        default=0.3, description="Min word overlap ratio in basic mode"
    )
    extended_length_threshold: float = Field(
        default=0.6, description="Max relative length difference in extended mode"
    )
    extended_word_overlap: float = Field(
        default=0.15, description="Min word overlap ratio in extended mode"
    )

    search_cache_ttl_seconds: int = Field(default=30, description="Search result cache TTL")
    search_cache_size: int = Field(default=100, description="Max cached search results")


class GlossaryConfig(BaseSettings):
    """Glossary RAG filter configuration."""

    model_config = SettingsConfigDict(env_prefix="GLOSSARY_")

    recall_limit: int = Field(default=50, description="Terms fetched by vector recall")
    recall_min_similarity: float = Field(
        default=0.6, description="Cosine similarity floor for vector recall"
    )
    fallback_limit: int = Field(
        default=200, description="Newest terms used when vector recall is unavailable"
    )
    prompt_max_entries: int = Field(default=200, description="Max terms rendered in a prompt")


class PretranslateConfig(BaseSettings):
    """Pretranslation orchestrator configuration."""

    model_config = SettingsConfigDict(env_prefix="PRETRANSLATE_")

    save_batch_size: int = Field(default=5, description="Buffered writes per checkpoint")
    ai_batch_size: int = Field(default=10, description="Segments per provider call")
    progress_every: int = Field(default=5, description="Progress update interval (segments)")
    tm_examples_per_segment: int = Field(
        default=5, description="TM examples gathered per queued segment"
    )
    tm_examples_min_score: int = Field(
        default=50, description="Score floor for TM examples in prompts"
    )
    default_confidence: float = Field(
        default=0.85, description="Confidence when the provider does not report one"
    )
    max_attempts: int = Field(default=2, description="Attempts per provider call")
    backoff_ms: int = Field(default=300, description="Base backoff between attempts")


class StorageConfig(BaseSettings):
    """Record store configuration."""

    model_config = SettingsConfigDict(env_prefix="STORAGE_")

    data_dir: Path = Field(default=Path("data"), description="JSON store directory")


# ---------------------------------------------------------------------------
# Main AppConfig
# ---------------------------------------------------------------------------


class AppConfig(BaseSettings):
    """Main application configuration."""

    model_config = SettingsConfigDict(env_prefix="")

    log_level: str = Field(default="INFO", description="Logging level")

    # Sub-configs
    llm: LLMConfig = Field(default_factory=LLMConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    glossary: GlossaryConfig = Field(default_factory=GlossaryConfig)
    pretranslate: PretranslateConfig = Field(default_factory=PretranslateConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)

    # Task-specific LLM configs (fallback to llm if not set)
    translator_llm: TranslatorLLMConfig = Field(default_factory=TranslatorLLMConfig)
    critic_llm: CriticLLMConfig = Field(default_factory=CriticLLMConfig)

    @classmethod
    def load(cls, env_file: Optional[Path] = None) -> "AppConfig":
        """Load configuration from environment and .env file."""
        from dotenv import load_dotenv

        if env_file and env_file.exists():
            load_dotenv(env_file)
        else:
            load_dotenv()

        return cls(
            llm=LLMConfig(),
            embedding=EmbeddingConfig(),
            retrieval=RetrievalConfig(),
            glossary=GlossaryConfig(),
            pretranslate=PretranslateConfig(),
            storage=StorageConfig(),
            translator_llm=TranslatorLLMConfig(),
            critic_llm=CriticLLMConfig(),
        )


# ---------------------------------------------------------------------------
# Global config singleton
# ---------------------------------------------------------------------------

_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = AppConfig.load()
    return _config


def set_config(config: AppConfig) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config


# ---------------------------------------------------------------------------
# LLM config helpers
# ---------------------------------------------------------------------------


def get_effective_llm_config(specific: TaskLLMConfig, fallback: LLMConfig) -> LLMConfig:
    """Merge a task-specific LLM config with the default one.

    Only the values set on ``specific`` override ``fallback``; the
    timeout always comes from the default config.
    """
    return LLMConfig(
        api_key=specific.api_key or fallback.api_key,
        base_url=specific.base_url or fallback.base_url,
        model=specific.model or fallback.model,
        max_tokens=specific.max_tokens or fallback.max_tokens,
        temperature=specific.temperature if specific.temperature > 0 else fallback.temperature,
        timeout_seconds=fallback.timeout_seconds,
    )


def get_effective_embedding_credentials(config: AppConfig) -> tuple[str, str]:
    """Return (api_key, base_url) for embeddings, falling back to OPENAI_*."""
    return (
        config.embedding.api_key or config.llm.api_key,
        config.embedding.base_url or config.llm.base_url,
    )


def log_config_summary(config: Optional[AppConfig] = None) -> None:
    """Print a summary table of the model and retrieval settings."""
    console = Console()
    app_config = config or get_config()

    console.print("\n[bold blue]=== LLM Configuration ===[/bold blue]")

    table = Table(show_header=True, header_style="bold blue")
    table.add_column("Task", style="cyan", width=12)
    table.add_column("Model", style="green")
    table.add_column("Base URL", style="yellow")
    table.add_column("Max Tokens", style="magenta", justify="right")
    table.add_column("Temperature", style="magenta", justify="right")
    table.add_column("Source", style="dim")

    table.add_row(
        "Default",
        app_config.llm.model,
        app_config.llm.base_url,
        str(app_config.llm.max_tokens),
        str(app_config.llm.temperature),
        "OPENAI_*",
    )

    task_configs: list[tuple[str, str, TaskLLMConfig]] = [
        ("Translator", "TRANSLATOR_LLM_*", app_config.translator_llm),
        ("Critic", "CRITIC_LLM_*", app_config.critic_llm),
    ]
    for task_name, prefix, task_cfg in task_configs:
        effective = get_effective_llm_config(task_cfg, app_config.llm)
        source = prefix if (task_cfg.model or task_cfg.api_key) else "OPENAI_* (fallback)"
        table.add_row(
            task_name,
            effective.model,
            effective.base_url,
            str(effective.max_tokens),
            str(effective.temperature),
            source,
        )

    console.print(table)

    retrieval = app_config.retrieval
    console.print("\n[bold blue]=== Retrieval ===[/bold blue]")
    console.print(
        f"[blue]  • Embeddings: {app_config.embedding.model} "
        f"({app_config.embedding.dimensions} dims)[/blue]"
    )
    console.print(
        f"[blue]  • TM limit/min score: {retrieval.default_limit}/{retrieval.default_min_score}"
        f", vector similarity: {retrieval.default_vector_similarity}%[/blue]"
    )
    console.print(
        f"[blue]  • Checkpoint every {app_config.pretranslate.save_batch_size} segments, "
        f"AI batches of {app_config.pretranslate.ai_batch_size}[/blue]"
    )
    console.print()
