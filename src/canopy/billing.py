"""Billing collaborator interface.

The core hands the billing collaborator usage counts and a description;
it never computes or enforces money itself. The only question it asks
back is ``has_credit(owner_id)`` before an iteration runs.

NullBilling (the default) grants everything. LedgerBilling keeps
per-owner balances in memory and prices usage with a per-model token
table; it exists for local runs and tests, not for real accounting.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from canopy.models.config import DEFAULT_MODEL
from canopy.models.iteration import UsageTally

logger = logging.getLogger(__name__)

MIN_BALANCE = 0.01


@runtime_checkable
class BillingCollaborator(Protocol):
    """Receives usage tallies and answers credit checks."""

    def has_credit(self, owner_id: str) -> bool:
        ...

    def record_usage(self, owner_id: str, mission_id: str, tally: UsageTally) -> None:
        ...


class NullBilling:
    """Billing that never blocks and discards usage."""

    def has_credit(self, owner_id: str) -> bool:
        return True

    def record_usage(self, owner_id: str, mission_id: str, tally: UsageTally) -> None:
        logger.debug(
            "Usage for %s/%s: %d+%d tokens, %d searches (%s)",
            owner_id,
            mission_id,
            tally.prompt_tokens,
            tally.completion_tokens,
            tally.search_count,
            tally.description,
        )


@dataclass(frozen=True)
class ModelPrice:
    input_per_million: float
    output_per_million: float


DEFAULT_PRICES: dict[str, ModelPrice] = {
    DEFAULT_MODEL: ModelPrice(input_per_million=0.50, output_per_million=2.40),
}


@dataclass
class LedgerBilling:
    """In-memory per-owner balances debited by priced usage.

    Unknown models are priced at the highest known rate. Searches cost a
    flat fee each. All costs carry the same markup.
    """

    balances: dict[str, float] = field(default_factory=dict)
    prices: dict[str, ModelPrice] = field(default_factory=lambda: dict(DEFAULT_PRICES))
    search_price: float = 0.005
    markup: float = 1.5
    min_balance: float = MIN_BALANCE

    def __post_init__(self) -> None:
        self._lock = threading.Lock()

    def _fallback_price(self) -> ModelPrice:
        if not self.prices:
            return ModelPrice(0.0, 0.0)
        return ModelPrice(
            input_per_million=max(p.input_per_million for p in self.prices.values()),
            output_per_million=max(p.output_per_million for p in self.prices.values()),
        )

    def cost_of(self, tally: UsageTally) -> float:
        price = self.prices.get(tally.model or "", None) or self._fallback_price()
        tokens = (
            tally.prompt_tokens / 1_000_000 * price.input_per_million
            + tally.completion_tokens / 1_000_000 * price.output_per_million
        )
        searches = tally.search_count * self.search_price
        return round((tokens + searches) * self.markup, 4)

    def has_credit(self, owner_id: str) -> bool:
        with self._lock:
            return self.balances.get(owner_id, 0.0) >= self.min_balance

    def record_usage(self, owner_id: str, mission_id: str, tally: UsageTally) -> None:
        cost = self.cost_of(tally)
        if cost <= 0:
            return
        with self._lock:
            self.balances[owner_id] = round(self.balances.get(owner_id, 0.0) - cost, 4)
        logger.debug("Debited %s %.4f for %s (%s)", owner_id, cost, mission_id, tally.description)
