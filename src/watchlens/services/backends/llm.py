"""
LLM-assisted enrichment backend.

For each identifier the watch page is fetched, reduced to a bounded
excerpt and sent to an OpenAI-compatible chat completion endpoint
(OpenRouter by default). The completion is repaired and parsed into the
shared payload. Each completion reserves its expected cost on the run's
``CostTracker`` before it is sent and settles the reservation with the
priced token usage afterwards, so concurrent items never start past the
ceiling.
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Sequence

import openai
from openai import AsyncOpenAI

from watchlens.exceptions import (
    ConfigurationError,
    CostLimitExceededError,
    RateLimitedError,
    TransientNetworkError,
    VideoUnavailableError,
    WatchlensError,
)
from watchlens.models.enrichment import EnrichmentResult
from watchlens.models.enums import BackendName, ErrorKind, HaltReason
from watchlens.services.backends.base import BackendBatch, Stopwatch, error_kind_for
from watchlens.services.context import EnrichmentContext
from watchlens.services.http.fetcher import PageFetcher
from watchlens.services.http.retry import backoff_delay
from watchlens.services.parsing.excerpt import build_excerpt
from watchlens.services.parsing.llm_response import parse_llm_response
from watchlens.services.parsing.worker_pool import WorkerPoolParser
from watchlens.services.pricing import PricingTable, resolve_model

logger = logging.getLogger(__name__)

# Billed when the endpoint reports no usage.
DEFAULT_TOKENS_PER_REQUEST = 1000
_DEFAULT_INPUT_SHARE = Decimal("0.7")
# Rough prompt size for cost estimates before any request has settled.
CHARS_PER_TOKEN = 4

SYSTEM_PROMPT = """You extract YouTube video metadata from excerpts of watch pages.
Return ONLY one JSON object: no explanations, no markdown, no code fences.

Rules:
1. Copy values exactly as they appear in the excerpt.
2. Use null for anything missing. Never invent data.
3. Numbers must be numbers ("1.2M views" -> 1200000).
4. Durations are in seconds ("10:25" -> 625).
5. Keep the description under 200 characters and at most 10 tags.

Format:
{
  "title": "video title",
  "description": "first 200 characters of the description",
  "channelName": "channel name",
  "channelId": "UC... channel id",
  "duration": 625,
  "viewCount": 1200000,
  "likeCount": 5400,
  "commentCount": 120,
  "publishedAt": "YYYY-MM-DDTHH:MM:SSZ",
  "tags": ["tag1", "tag2"],
  "thumbnailUrl": "largest thumbnail URL",
  "category": "Music|Gaming|Education|Entertainment|Sports|News|Comedy|Science|Film|People|Howto|Other",
  "isLivestream": false,
  "isShort": false,
  "isPremiere": false
}"""

USER_PROMPT_TEMPLATE = "Extract the metadata of video {video_id}. Return compact JSON only.\n\n{excerpt}"


@dataclass(frozen=True)
class Completion:
    """Text and token usage of one chat completion."""

    text: str
    prompt_tokens: int
    completion_tokens: int
    model: str

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


class LLMClient:
    """
    Thin async wrapper over an OpenAI-compatible chat completions API.

    Parameters
    ----------
    api_key : str
        Endpoint API key.
    model : str
        Model name or alias.
    base_url : str, optional
        Endpoint base URL (default: OpenRouter).
    temperature : float, optional
        Sampling temperature (default: 0.1).
    max_tokens : int, optional
        Completion token cap (default: 2000).
    app_url : str | None, optional
        Sent as ``HTTP-Referer`` for OpenRouter attribution.
    app_name : str | None, optional
        Sent as ``X-Title`` for OpenRouter attribution.
    timeout : float, optional
        Request timeout in seconds (default: 30.0).
    client : AsyncOpenAI | None, optional
        Pre-built client, mainly for tests.
    """

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str = "https://openrouter.ai/api/v1",
        temperature: float = 0.1,
        max_tokens: int = 2000,
        app_url: str | None = None,
        app_name: str | None = None,
        timeout: float = 30.0,
        client: Optional[AsyncOpenAI] = None,
    ) -> None:
        self.model = resolve_model(model)
        self.temperature = temperature
        self.max_tokens = max_tokens
        if client is None:
            headers: dict[str, str] = {}
            if app_url:
                headers["HTTP-Referer"] = app_url
            if app_name:
                headers["X-Title"] = app_name
            client = AsyncOpenAI(
                api_key=api_key,
                base_url=base_url,
                timeout=timeout,
                max_retries=0,
                default_headers=headers or None,
            )
        self._client = client

    async def complete(self, system: str, user: str) -> Completion:
        """
        Run one chat completion.

        Parameters
        ----------
        system : str
            System prompt.
        user : str
            User message.

        Returns
        -------
        Completion
            Response text and token usage (zeros when not reported).

        Raises
        ------
        RateLimitedError
            On HTTP 429 from the endpoint.
        TransientNetworkError
            On connection errors, timeouts and other error responses.
        """
        try:
            response = await self._client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": user},
                ],
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
        except openai.RateLimitError as e:
            raise RateLimitedError(f"LLM endpoint rate limited: {e}", status_code=429) from e
        except openai.APIStatusError as e:
            raise TransientNetworkError(
                f"LLM endpoint returned HTTP {e.status_code}",
                original_error=e,
                status_code=e.status_code,
            ) from e
        except openai.APIConnectionError as e:
            raise TransientNetworkError(
                f"LLM endpoint unreachable: {type(e).__name__}", original_error=e
            ) from e

        text = ""
        if response.choices:
            text = response.choices[0].message.content or ""
        usage = response.usage
        return Completion(
            text=text,
            prompt_tokens=usage.prompt_tokens if usage else 0,
            completion_tokens=usage.completion_tokens if usage else 0,
            model=response.model or self.model,
        )

    async def aclose(self) -> None:
        await self._client.close()


class LLMBackend:
    """
    Enrichment backend that asks a language model to read the page.

    Parameters
    ----------
    client : LLMClient | None
        Completion client; the backend is unavailable without one.
    fetcher : PageFetcher
        Shared page fetcher.
    parser : WorkerPoolParser
        Runs the excerpt builder off the event loop.
    context : EnrichmentContext
        Shared run state (cost tracker).
    pricing : PricingTable | None, optional
        Model prices (default: built-in table).
    retry_attempts : int, optional
        Attempts per item, including the first (default: 3).
    retry_backoff_seconds : float, optional
        Base backoff delay (default: 1.0).
    retry_backoff_max_seconds : float, optional
        Backoff cap (default: 10.0).
    excerpt_max_chars : int, optional
        Excerpt size cap (default: 80000).
    state_json_max_chars : int, optional
        Page-state JSON slice cap (default: 20000).
    """

    name = BackendName.LLM.value
    max_batch_size = 1

    def __init__(
        self,
        client: Optional[LLMClient],
        fetcher: PageFetcher,
        parser: WorkerPoolParser,
        context: EnrichmentContext,
        pricing: Optional[PricingTable] = None,
        retry_attempts: int = 3,
        retry_backoff_seconds: float = 1.0,
        retry_backoff_max_seconds: float = 10.0,
        excerpt_max_chars: int = 80_000,
        state_json_max_chars: int = 20_000,
    ) -> None:
        self.client = client
        self.fetcher = fetcher
        self.parser = parser
        self.context = context
        self.pricing = pricing or PricingTable()
        self.retry_attempts = max(1, retry_attempts)
        self.retry_backoff_seconds = retry_backoff_seconds
        self.retry_backoff_max_seconds = retry_backoff_max_seconds
        self.excerpt_max_chars = excerpt_max_chars
        self.state_json_max_chars = state_json_max_chars

    def is_available(self) -> bool:
        """Check for a client and remaining cost budget."""
        return self.client is not None and not self.context.cost.limit_reached()

    async def enrich(self, video_ids: Sequence[str]) -> BackendBatch:
        """
        Extract identifiers one by one until done or out of budget.

        Parameters
        ----------
        video_ids : Sequence[str]
            Identifiers to extract (normally one).

        Returns
        -------
        BackendBatch
            Results for the identifiers attempted; ``COST_LIMIT`` when the
            ceiling stopped the batch, ``RATE_LIMITED`` when a host
            throttled us.
        """
        client = self.client
        if client is None:
            raise ConfigurationError("LLM backend has no completion client", [self.name])

        batch = BackendBatch()
        for video_id in video_ids:
            try:
                result = await self._extract_one(client, video_id)
            except CostLimitExceededError as e:
                logger.warning(
                    "LLM cost limit reached ($%s of $%s), not starting %s",
                    e.total_cost,
                    e.cost_limit,
                    video_id,
                )
                batch.halt = HaltReason.COST_LIMIT
                break
            batch.results.append(result)
            if result.error_kind is ErrorKind.RATE_LIMITED:
                batch.halt = HaltReason.RATE_LIMITED
                break
            if result.error_kind is ErrorKind.COST_LIMIT:
                batch.halt = HaltReason.COST_LIMIT
                break
        return batch

    async def _extract_one(self, client: LLMClient, video_id: str) -> EnrichmentResult:
        """
        Fetch, excerpt and extract one identifier with retries.

        Raises
        ------
        CostLimitExceededError
            If the budget is spent before anything was charged for this
            identifier. A refusal on a retry is reported on the result.
        """
        if self.context.cost.limit_reached():
            raise self._cost_limit_error()

        timer = Stopwatch()
        model = client.model
        cost = Decimal("0")
        tokens = 0
        last_error: WatchlensError = TransientNetworkError("LLM extraction not attempted")

        for attempt in range(self.retry_attempts):
            try:
                html = await self.fetcher.fetch(video_id)
                excerpt = await self.parser.run(
                    build_excerpt, html, self.excerpt_max_chars, self.state_json_max_chars
                )
                user_prompt = USER_PROMPT_TEMPLATE.format(video_id=video_id, excerpt=excerpt)
                reserved = self._reserve(model, SYSTEM_PROMPT, user_prompt)
                try:
                    completion = await client.complete(SYSTEM_PROMPT, user_prompt)
                except BaseException:
                    self.context.cost.release(reserved)
                    raise
                attempt_cost, attempt_tokens = self._charge(model, completion, reserved)
                cost += attempt_cost
                tokens += attempt_tokens
                data = parse_llm_response(completion.text)
            except CostLimitExceededError as e:
                if not tokens:
                    raise
                last_error = e
                break
            except (RateLimitedError, VideoUnavailableError) as e:
                last_error = e
                break
            except WatchlensError as e:
                last_error = e
                if attempt + 1 < self.retry_attempts:
                    delay = backoff_delay(
                        attempt, self.retry_backoff_seconds, self.retry_backoff_max_seconds
                    )
                    logger.warning(
                        "LLM extraction attempt %d/%d for %s failed (%s), retrying in %.0fs",
                        attempt + 1,
                        self.retry_attempts,
                        video_id,
                        e.message,
                        delay,
                    )
                    await asyncio.sleep(delay)
                continue

            if attempt:
                logger.info("LLM extraction for %s succeeded on attempt %d", video_id, attempt + 1)
            return EnrichmentResult(
                video_id=video_id,
                success=True,
                data=data,
                provider=self.name,
                model=model,
                cost=cost,
                tokens_used=tokens,
                elapsed_seconds=timer.elapsed,
            )

        logger.info("LLM extraction for %s failed: %s", video_id, last_error.message)
        return EnrichmentResult.failure(
            video_id,
            self.name,
            last_error.message,
            error_kind_for(last_error),
            model=model,
            cost=cost,
            tokens_used=tokens,
            elapsed_seconds=timer.elapsed,
        )

    def estimate_cost(self, model: str, system_prompt: str, user_prompt: str) -> Decimal:
        """
        Expected cost of the next completion.

        The last settled request is the best predictor once there is one;
        before that the prompt length is priced with a completion of a
        quarter of the prompt.
        """
        observed = self.context.cost.last_item_cost
        if observed > 0:
            return observed
        prompt_tokens = math.ceil((len(system_prompt) + len(user_prompt)) / CHARS_PER_TOKEN)
        return self.pricing.cost_for(model, prompt_tokens, prompt_tokens // 4)

    def _reserve(self, model: str, system_prompt: str, user_prompt: str) -> Decimal:
        estimate = self.estimate_cost(model, system_prompt, user_prompt)
        if not self.context.cost.try_reserve(estimate):
            raise self._cost_limit_error()
        return estimate

    def _cost_limit_error(self) -> CostLimitExceededError:
        cost = self.context.cost
        return CostLimitExceededError(
            HaltReason.COST_LIMIT.value,
            total_cost=str(cost.run_cost),
            cost_limit=str(cost.limit),
        )

    def _charge(
        self, model: str, completion: Completion, reserved: Decimal
    ) -> tuple[Decimal, int]:
        prompt_tokens = completion.prompt_tokens
        completion_tokens = completion.completion_tokens
        if prompt_tokens + completion_tokens == 0:
            prompt_tokens = int(DEFAULT_TOKENS_PER_REQUEST * _DEFAULT_INPUT_SHARE)
            completion_tokens = DEFAULT_TOKENS_PER_REQUEST - prompt_tokens
        cost = self.pricing.cost_for(model, prompt_tokens, completion_tokens)
        tokens = prompt_tokens + completion_tokens
        self.context.cost.settle(reserved, cost, tokens)
        return cost, tokens

    async def aclose(self) -> None:
        """Close the completion client."""
        if self.client is not None:
            await self.client.aclose()

