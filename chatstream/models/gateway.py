"""Model Gateway: build the provider, failover pool and orchestrator from Config.

Keeps the core free of configuration parsing: everything below receives plain
lists and numbers.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Awaitable, Callable

from chatstream.core.orchestrator import StreamOrchestrator
from chatstream.models.failover import FailoverController
from chatstream.models.lm_studio import LMStudioProvider, is_lm_studio_native_url
from chatstream.models.openai_compat import OpenAIChatProvider
from chatstream.models.streaming import ChatProvider
from chatstream.parsing.extractor import TagExtractor
from chatstream.parsing.grammar import TagGrammar

if TYPE_CHECKING:
    from chatstream.config.loader import Config, ProviderSettings

logger = logging.getLogger(__name__)


def _openai_base_url(base_url: str | None) -> str | None:
    # OpenAI-compat base URL must end with /v1 for chat/completions path,
    # except endpoints that already carry their own versioned prefix (Gemini).
    if not base_url:
        return None
    stripped = base_url.rstrip("/")
    if "/v1" in stripped or "/openai" in stripped:
        return base_url
    return stripped + "/v1"


def build_provider(settings: ProviderSettings) -> ChatProvider:
    """LM Studio native when configured (or the URL looks like it), else OpenAI-compatible."""
    if settings.kind == "lm_studio":
        base = settings.base_url or "http://localhost:1234/v1"
        logger.info("provider: LM Studio native", extra={"base_url": base})
        return LMStudioProvider(
            base_url=base,
            system=settings.system_prompt,
            timeout=settings.timeout_seconds,
        )
    if settings.base_url and is_lm_studio_native_url(settings.base_url):
        logger.info("base_url looks like LM Studio; provider.kind=lm_studio hides reasoning tokens")
    base_url = _openai_base_url(settings.base_url)
    logger.info("provider: OpenAI-compatible", extra={"base_url": base_url or "default"})
    return OpenAIChatProvider(
        base_url=base_url,
        system=settings.system_prompt,
        timeout=settings.timeout_seconds,
    )


def build_failover(config: Config) -> FailoverController:
    """Raises NoCredentialsError when no API key or model is configured."""
    return FailoverController(
        config.provider.api_keys,
        config.provider.models,
        short_block_seconds=config.failover.rate_limit_minute_seconds,
        long_block_seconds=config.failover.rate_limit_day_seconds,
        permission_denied_seconds=config.failover.permission_denied_seconds,
    )


def build_extractor(config: Config) -> TagExtractor:
    grammar = TagGrammar(reactions=config.parser.reactions)
    return TagExtractor(grammar, echo_filter=config.parser.echo_filter_enabled)


def build_orchestrator(
    config: Config,
    *,
    provider: ChatProvider | None = None,
    failover: FailoverController | None = None,
    sleep: Callable[[float], Awaitable[None]] | None = None,
) -> StreamOrchestrator:
    kwargs = {"sleep": sleep} if sleep is not None else {}
    return StreamOrchestrator(
        provider or build_provider(config.provider),
        failover or build_failover(config),
        build_extractor(config),
        max_retries=config.retry.max_retries,
        base_delay=config.retry.base_delay_seconds,
        overload_status_codes=config.retry.overload_status_codes,
        max_input_tokens=config.provider.max_input_tokens,
        **kwargs,
    )
