"""OpenAI-compatible translation provider."""

import json
from typing import Literal, Optional, Protocol

import structlog
from pydantic import BaseModel, Field

from tm_pretranslator.config import LLMConfig, get_config, get_effective_llm_config
from tm_pretranslator.translator.prompts import (
    MOCK_MARKER,
    BatchContext,
    BatchItem,
    Critique,
    build_batch_prompt,
    build_critique_prompt,
    build_fix_prompt,
    build_system_prompt,
    parse_batch_response,
    parse_critique,
    strip_mock_markers,
)
from tm_pretranslator.translator.retry import RetryPolicy, linear_backoff

logger = structlog.get_logger()

# Task types for provider configuration
TaskType = Literal["translate", "critic", "default"]

CRITIC_FIXED_CONFIDENCE = 0.95
CRITIC_CLEAN_CONFIDENCE = 0.9


class ProviderUsage(BaseModel):
    input_tokens: int = 0
    output_tokens: int = 0
    mock: bool = Field(default=False, description="True when no real provider answered")


class ProviderResponse(BaseModel):
    """Raw completion text plus usage."""

    text: str
    model: str = ""
    usage: ProviderUsage = Field(default_factory=ProviderUsage)


class BatchResult(BaseModel):
    """Translations of one batch, keyed by segment id."""

    translations: dict[str, str]
    confidence: Optional[float] = None
    usage: ProviderUsage = Field(default_factory=ProviderUsage)


class CriticResult(BaseModel):
    """Outcome of the draft, critique and fix loop for one segment."""

    target_text: str
    confidence: float
    draft: str
    critique: Critique = Field(default_factory=Critique)
    fixed: bool = False


class TranslationProvider(Protocol):
    """Anything that can translate batches of segments.

    Implementations raise ``ProviderError`` subclasses on failure.
    """

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        model: Optional[str] = None,
    ) -> ProviderResponse:
        ...

    async def translate_batch(self, items: list[BatchItem], context: BatchContext) -> BatchResult:
        ...

    async def translate_with_critic(self, item: BatchItem, context: BatchContext) -> CriticResult:
        ...


def default_retry_policy(config: LLMConfig) -> RetryPolicy:
    """Retry policy: attempts from the pretranslation settings, timeout from the LLM."""
    settings = get_config().pretranslate
    return RetryPolicy(
        max_attempts=settings.max_attempts,
        timeout_seconds=config.timeout_seconds,
        backoff=linear_backoff(settings.backoff_ms / 1000),
    )


class OpenAIProvider:
    """Translation provider over the OpenAI chat completions API.

    Without an API key the provider runs degraded: it answers every
    request with a mock translation flagged in ``usage.mock`` instead of
    failing, so pipelines can be exercised offline.
    """

    def __init__(
        self,
        config: Optional[LLMConfig] = None,
        task: Optional[TaskType] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        """Initialize the provider.

        Args:
            config: LLM configuration, takes precedence over ``task``
            task: Task type for automatic config selection (translate, critic)
            retry_policy: Timeout and retry budget for every call
        """
        self.config = config or self._get_config_for_task(task or "default")
        self.retry_policy = retry_policy or default_retry_policy(self.config)
        self._client = None

    def _get_config_for_task(self, task: TaskType) -> LLMConfig:
        app_config = get_config()
        if task == "translate":
            return get_effective_llm_config(app_config.translator_llm, app_config.llm)
        if task == "critic":
            return get_effective_llm_config(app_config.critic_llm, app_config.llm)
        return app_config.llm

    @property
    def is_mock(self) -> bool:
        return not self.config.api_key

    @property
    def client(self):
        """Lazy-load the OpenAI client."""
        if self._client is None:
            import openai

            self._client = openai.AsyncOpenAI(
                api_key=self.config.api_key,
                base_url=self.config.base_url,
                max_retries=0,
            )
        return self._client

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        model: Optional[str] = None,
    ) -> ProviderResponse:
        """Send one chat completion under the retry policy.

        Raises:
            ProviderError: Classified error of the last failed attempt
        """
        model = model or self.config.model
        if self.is_mock:
            logger.warning("provider_mock_response", model=model)
            return ProviderResponse(text=MOCK_MARKER, model=model, usage=ProviderUsage(mock=True))

        async def _call():
            return await self.client.chat.completions.create(
                model=model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=self.config.temperature if temperature is None else temperature,
                max_tokens=max_tokens or self.config.max_tokens,
            )

        response = await self.retry_policy.run(_call, operation="chat_completion")
        usage = response.usage
        return ProviderResponse(
            text=(response.choices[0].message.content or "").strip(),
            model=response.model or model,
            usage=ProviderUsage(
                input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
                output_tokens=getattr(usage, "completion_tokens", 0) or 0,
            ),
        )

    async def translate_batch(self, items: list[BatchItem], context: BatchContext) -> BatchResult:
        """Translate a batch of segments in one call.

        Segments missing from the reply keep their source text.

        Raises:
            ProviderError: The call failed after retries
            ValueError: The reply could not be parsed
        """
        if self.is_mock:
            mocked = [
                {"segment_id": item.segment_id, "target_mt": f"{item.source_text} {MOCK_MARKER}"}
                for item in items
            ]
            return BatchResult(
                translations=parse_batch_response(json.dumps(mocked, ensure_ascii=False), items),
                usage=ProviderUsage(mock=True),
            )

        response = await self.complete(
            build_system_prompt(context),
            build_batch_prompt(items, context, get_config().glossary.prompt_max_entries),
            temperature=context.temperature,
            model=context.model,
        )
        translations = parse_batch_response(response.text, items)
        logger.debug(
            "provider_batch_translated",
            segments=len(items),
            returned=len(translations),
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )
        return BatchResult(translations=translations, usage=response.usage)

    async def translate_with_critic(self, item: BatchItem, context: BatchContext) -> CriticResult:
        """Draft, critique against the glossary and fix one segment."""
        draft_result = await self.translate_batch([item], context)
        draft = draft_result.translations[item.segment_id]
        if draft_result.usage.mock:
            return CriticResult(target_text=draft, confidence=CRITIC_CLEAN_CONFIDENCE, draft=draft)

        critique_response = await self.complete(
            "You are a meticulous translation reviewer. Respond with JSON only.",
            build_critique_prompt(item.source_text, draft, context),
            temperature=0.0,
            model=context.model,
        )
        critique = parse_critique(critique_response.text)
        if not critique.errors:
            return CriticResult(
                target_text=draft,
                confidence=CRITIC_CLEAN_CONFIDENCE,
                draft=draft,
                critique=critique,
            )

        logger.info("critic_found_errors", segment_id=item.segment_id, errors=len(critique.errors))
        fix_response = await self.complete(
            build_system_prompt(context),
            build_fix_prompt(item.source_text, draft, critique, context),
            temperature=context.temperature,
            model=context.model,
        )
        fixed = strip_mock_markers(fix_response.text).strip('"') or draft
        return CriticResult(
            target_text=fixed,
            confidence=CRITIC_FIXED_CONFIDENCE,
            draft=draft,
            critique=critique,
            fixed=True,
        )


async def test_provider_connection(provider: Optional[TranslationProvider] = None) -> bool:
    """Test if the provider answers real completions.

    Returns:
        True if connection successful; False on errors and mock responses
    """
    try:
        provider = provider or OpenAIProvider(task="translate")
        response = await provider.complete(
            system_prompt="You are a helpful assistant.",
            user_prompt="Say 'hello' in French.",
            max_tokens=10,
        )
        if response.usage.mock:
            logger.warning("provider_connection_mock")
            return False
        return len(response.text) > 0
    except Exception as e:
        logger.error("provider_connection_failed", error=str(e))
        return False
