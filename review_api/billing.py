"""In-memory cost ledger for completed generations.

Records live for the lifetime of the process only.
"""

import logging
import threading
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone

from .constants import DEFAULT_INITIAL_CREDITS_USD
from .model_registry import DEFAULT_PRICING_MODEL, MODEL_PRICING

logger = logging.getLogger(__name__)

TOKENS_PER_PRICING_UNIT = 1_000_000


@dataclass(frozen=True)
class UsageRecord:
    timestamp: datetime
    model: str
    input_tokens: int
    output_tokens: int
    cost: float

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass(frozen=True)
class BillingResult:
    cost: float
    running_total: float


@dataclass(frozen=True)
class ModelCost:
    cost: float
    tokens: int
    call_count: int


class CostLedger:
    def __init__(
        self,
        pricing: Mapping[str, tuple[float, float]] = MODEL_PRICING,
        default_model: str = DEFAULT_PRICING_MODEL,
        initial_credits: float = DEFAULT_INITIAL_CREDITS_USD,
    ) -> None:
        if default_model not in pricing:
            raise ValueError(f"Default pricing model {default_model} has no pricing entry")
        self._pricing = pricing
        self._default_model = default_model
        self._initial_credits = initial_credits
        self._records: list[UsageRecord] = []
        self._lock = threading.Lock()

    @property
    def initial_credits(self) -> float:
        return self._initial_credits

    def rate_for(self, model: str) -> tuple[float, float]:
        """Per-token (input, output) USD rate, falling back to the default model."""
        per_million = self._pricing.get(model)
        if per_million is None and "/" in model:
            # Gateway ids look like "vendor/model".
            per_million = self._pricing.get(model.rsplit("/", 1)[1])
        if per_million is None:
            per_million = self._pricing[self._default_model]
        input_rate, output_rate = per_million
        return input_rate / TOKENS_PER_PRICING_UNIT, output_rate / TOKENS_PER_PRICING_UNIT

    def record_usage(self, model: str, input_tokens: int, output_tokens: int) -> BillingResult:
        input_tokens = max(input_tokens, 0)
        output_tokens = max(output_tokens, 0)
        input_rate, output_rate = self.rate_for(model)
        cost = input_tokens * input_rate + output_tokens * output_rate
        record = UsageRecord(
            timestamp=datetime.now(timezone.utc),
            model=model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost=cost,
        )
        with self._lock:
            self._records.append(record)
            running_total = sum(r.cost for r in self._records)

        logger.info(
            "Usage recorded",
            extra={
                "model": model,
                "input_tokens": input_tokens,
                "output_tokens": output_tokens,
                "cost": cost,
                "running_total": running_total,
            },
        )
        return BillingResult(cost=cost, running_total=running_total)

    def get_total_cost(self) -> float:
        with self._lock:
            return sum(r.cost for r in self._records)

    def get_usage_history(self) -> list[UsageRecord]:
        with self._lock:
            return list(self._records)

    def get_cost_by_model(self) -> dict[str, ModelCost]:
        with self._lock:
            records = list(self._records)

        totals: dict[str, ModelCost] = {}
        for record in records:
            current = totals.get(record.model, ModelCost(cost=0.0, tokens=0, call_count=0))
            totals[record.model] = ModelCost(
                cost=current.cost + record.cost,
                tokens=current.tokens + record.total_tokens,
                call_count=current.call_count + 1,
            )
        return totals

    def get_remaining_credits(self) -> float:
        return self._initial_credits - self.get_total_cost()
