"""Read-only views over the cost ledger and the provider catalog."""

import os
from collections.abc import Mapping

from review_api.billing import CostLedger
from review_api.model_registry import get_models_for_provider
from review_api.providers.registry import PROVIDERS, get_env_api_key
from review_api.schemas import (
    BillingSnapshot,
    CreditsInfo,
    ModelCostModel,
    ModelMetadata,
    ProviderMetadata,
    UsageRecordModel,
)


def billing_snapshot(ledger: CostLedger) -> BillingSnapshot:
    return BillingSnapshot(
        total_cost=ledger.get_total_cost(),
        usage_history=[
            UsageRecordModel(
                timestamp=record.timestamp,
                model=record.model,
                input_tokens=record.input_tokens,
                output_tokens=record.output_tokens,
                total_tokens=record.total_tokens,
                cost=record.cost,
            )
            for record in ledger.get_usage_history()
        ],
        cost_by_model={
            model: ModelCostModel(cost=totals.cost, tokens=totals.tokens, call_count=totals.call_count)
            for model, totals in ledger.get_cost_by_model().items()
        },
        credits=CreditsInfo(initial=ledger.initial_credits, remaining=ledger.get_remaining_credits()),
    )


def list_provider_metadata(environ: Mapping[str, str] = os.environ) -> list[ProviderMetadata]:
    """List providers; ``hasServerKey`` tells clients whether a request key is optional."""
    return [
        ProviderMetadata(
            id=provider.id,
            default_model=provider.default_model,
            supports_fallback_models=provider.supports_fallback_models,
            has_server_key=get_env_api_key(provider.id, environ) is not None,
            models=[
                ModelMetadata(id=model.id, name=model.name, description=model.description)
                for model in get_models_for_provider(provider.id)
            ],
        )
        for provider in PROVIDERS.values()
    ]
