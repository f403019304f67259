"""
Pre-run estimate of YouTube API quota and LLM spend.
"""

from __future__ import annotations

import math
from decimal import Decimal

from watchlens.config.enrichment import EnrichmentConfig
from watchlens.models.enrichment_report import EnrichmentEstimate
from watchlens.services.backends.youtube_api import MAX_IDS_PER_CALL
from watchlens.services.pricing import PricingTable, resolve_model

# Average tokens per LLM extraction (excerpt plus completion).
TOKENS_PER_VIDEO = 12_500
INPUT_TOKEN_SHARE = Decimal("0.8")
MAX_RECOMMENDED_BATCH_SIZE = 10


def estimate_run(
    video_count: int,
    config: EnrichmentConfig,
    pricing: PricingTable | None = None,
    model: str = "google/gemma-3-4b-it",
    quota_cost_per_call: int = 1,
) -> EnrichmentEstimate:
    """
    Estimate the quota and cost of enriching ``video_count`` videos.

    Parameters
    ----------
    video_count : int
        Number of unique videos to enrich.
    config : EnrichmentConfig
        Supplies the cost limit.
    pricing : PricingTable | None, optional
        Model prices (default: built-in table).
    model : str, optional
        Model the LLM estimate is priced for.
    quota_cost_per_call : int, optional
        Quota units per batched ``videos.list`` call (default: 1).

    Returns
    -------
    EnrichmentEstimate
        API calls and units, LLM tokens and cost, a recommended batch
        size and whether the LLM cost fits the configured limit.

    Raises
    ------
    ValueError
        If ``video_count`` is negative.

    Examples
    --------
    >>> estimate = estimate_run(120, EnrichmentConfig())
    >>> estimate.api_calls, estimate.api_quota_units
    (3, 3)
    """
    if video_count < 0:
        raise ValueError("video_count must be non-negative")

    pricing = pricing or PricingTable()
    model = resolve_model(model)
    api_calls = math.ceil(video_count / MAX_IDS_PER_CALL)
    total_tokens = video_count * TOKENS_PER_VIDEO
    input_tokens = int(total_tokens * INPUT_TOKEN_SHARE)
    output_tokens = total_tokens - input_tokens
    cost = pricing.cost_for(model, input_tokens, output_tokens)

    return EnrichmentEstimate(
        video_count=video_count,
        api_calls=api_calls,
        api_quota_units=api_calls * quota_cost_per_call,
        llm_model=model,
        llm_input_tokens=input_tokens,
        llm_output_tokens=output_tokens,
        llm_cost=cost,
        recommended_batch_size=min(MAX_RECOMMENDED_BATCH_SIZE, video_count),
        within_cost_limit=cost <= config.cost_limit,
    )
