"""
Tests for the LLM pricing table.
"""

from __future__ import annotations

from decimal import Decimal

from watchlens.services.pricing import (
    DEFAULT_PRICE,
    ModelPrice,
    PricingTable,
    resolve_model,
)


class TestResolveModel:
    """Test model alias resolution."""

    def test_alias(self) -> None:
        """Test that short names resolve to qualified names."""
        assert resolve_model("gpt-4o-mini") == "openai/gpt-4o-mini"

    def test_qualified_and_unknown_names_pass_through(self) -> None:
        """Test that other names are returned unchanged."""
        assert resolve_model("openai/gpt-4o") == "openai/gpt-4o"
        assert resolve_model("acme/new-model") == "acme/new-model"


class TestPricingTable:
    """Test cost calculation."""

    def test_cost_for_known_model(self) -> None:
        """Test per-1k pricing of input and output tokens."""
        table = PricingTable()
        cost = table.cost_for("gpt-4o-mini", prompt_tokens=1000, completion_tokens=1000)
        assert cost == Decimal("0.00075")

    def test_unknown_model_uses_default_price(self) -> None:
        """Test that unknown models are still charged."""
        table = PricingTable()
        assert table.price_for("acme/new-model") == DEFAULT_PRICE
        assert table.cost_for("acme/new-model", 1000, 1000) == Decimal("0.003")

    def test_custom_prices(self) -> None:
        """Test a table with custom prices."""
        table = PricingTable({"test/model": ModelPrice(Decimal("0.05"), Decimal("0"))})
        assert table.cost_for("test/model", prompt_tokens=1000, completion_tokens=500) == (
            Decimal("0.05")
        )

    def test_free_model(self) -> None:
        """Test that free models cost nothing."""
        table = PricingTable()
        assert table.cost_for("deepseek/deepseek-r1-0528:free", 5000, 5000) == 0
