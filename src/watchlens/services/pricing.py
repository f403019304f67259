"""
LLM pricing table and per-request cost calculation.

Prices are approximate OpenRouter list prices in USD per 1,000 tokens and
change frequently; unknown models are charged the default price so that
the cost ceiling still applies to them.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Mapping, Optional

_THOUSAND = Decimal(1000)

# Short model names accepted on the command line.
MODEL_ALIASES: dict[str, str] = {
    "claude-3-haiku": "anthropic/claude-3-haiku",
    "claude-3-sonnet": "anthropic/claude-3-sonnet",
    "claude-3-opus": "anthropic/claude-3-opus",
    "gpt-3.5-turbo": "openai/gpt-3.5-turbo",
    "gpt-4-turbo-preview": "openai/gpt-4-turbo-preview",
    "gpt-4o": "openai/gpt-4o",
    "gpt-4o-mini": "openai/gpt-4o-mini",
    "llama-3.1-8b-instruct": "meta-llama/llama-3.1-8b-instruct",
    "llama-3.1-70b-instruct": "meta-llama/llama-3.1-70b-instruct",
    "gemma-3-4b-it": "google/gemma-3-4b-it",
    "gemma-3n-e4b-it": "google/gemma-3n-e4b-it",
}


@dataclass(frozen=True)
class ModelPrice:
    """Price of one model in USD per 1,000 input and output tokens."""

    input_per_1k: Decimal
    output_per_1k: Decimal


DEFAULT_PRICE = ModelPrice(Decimal("0.001"), Decimal("0.002"))

DEFAULT_PRICES: dict[str, ModelPrice] = {
    "anthropic/claude-3-haiku": ModelPrice(Decimal("0.00025"), Decimal("0.00125")),
    "anthropic/claude-3-sonnet": ModelPrice(Decimal("0.003"), Decimal("0.015")),
    "anthropic/claude-3-opus": ModelPrice(Decimal("0.015"), Decimal("0.075")),
    "openai/gpt-3.5-turbo": ModelPrice(Decimal("0.0015"), Decimal("0.002")),
    "openai/gpt-4-turbo-preview": ModelPrice(Decimal("0.01"), Decimal("0.03")),
    "openai/gpt-4o": ModelPrice(Decimal("0.005"), Decimal("0.015")),
    "openai/gpt-4o-mini": ModelPrice(Decimal("0.00015"), Decimal("0.0006")),
    "meta-llama/llama-3.1-8b-instruct": ModelPrice(Decimal("0.0002"), Decimal("0.0002")),
    "meta-llama/llama-3.1-70b-instruct": ModelPrice(Decimal("0.0009"), Decimal("0.0009")),
    "google/gemma-3-4b-it": ModelPrice(Decimal("0.00002"), Decimal("0.00004")),
    "google/gemma-3n-e4b-it": ModelPrice(Decimal("0.00002"), Decimal("0.00004")),
    "deepseek/deepseek-r1-0528:free": ModelPrice(Decimal("0"), Decimal("0")),
}


def resolve_model(model: str) -> str:
    """
    Map a short model alias to its provider-qualified name.

    Parameters
    ----------
    model : str
        Alias (``"gpt-4o"``) or qualified name (``"openai/gpt-4o"``).

    Returns
    -------
    str
        Qualified model name; unknown names are returned unchanged.
    """
    return MODEL_ALIASES.get(model, model)


class PricingTable:
    """
    Lookup of model prices with a default for unknown models.

    Parameters
    ----------
    prices : Mapping[str, ModelPrice] | None, optional
        Prices keyed by qualified model name (default: ``DEFAULT_PRICES``).
    default : ModelPrice, optional
        Price charged for models missing from the table.

    Examples
    --------
    >>> table = PricingTable({"test/model": ModelPrice(Decimal("0.05"), Decimal("0"))})
    >>> table.cost_for("test/model", prompt_tokens=1000, completion_tokens=0)
    Decimal('0.05')
    """

    def __init__(
        self,
        prices: Optional[Mapping[str, ModelPrice]] = None,
        default: ModelPrice = DEFAULT_PRICE,
    ) -> None:
        self._prices = dict(DEFAULT_PRICES if prices is None else prices)
        self.default = default

    def price_for(self, model: str) -> ModelPrice:
        """Get the price of a model, resolving aliases."""
        return self._prices.get(resolve_model(model), self.default)

    def cost_for(self, model: str, prompt_tokens: int, completion_tokens: int) -> Decimal:
        """
        Calculate the cost of one request.

        Parameters
        ----------
        model : str
            Model name or alias.
        prompt_tokens : int
            Input tokens billed.
        completion_tokens : int
            Output tokens billed.

        Returns
        -------
        Decimal
            Cost in USD.
        """
        price = self.price_for(model)
        return (
            Decimal(prompt_tokens) * price.input_per_1k
            + Decimal(completion_tokens) * price.output_per_1k
        ) / _THOUSAND
