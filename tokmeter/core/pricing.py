"""
Pricing resolution and cost calculation.

Maps model names onto records of a LiteLLM-style pricing dataset and turns
token counts into USD amounts. Each log source bills with its own scheme:

- chat-log entries are billed one event at a time, with per-category
  tiering above 200,000 tokens
- exec-session deltas are summed per model over a whole query and billed
  once, splitting cached from non-cached input
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from .token_counter import ChatTokens, ExecTokens, saturating_sub

logger = logging.getLogger(__name__)

TIERED_THRESHOLD = 200_000

CHAT_LOG_PROVIDER_PREFIXES: Tuple[str, ...] = (
    "anthropic/",
    "claude-3-5-",
    "claude-3-",
    "claude-",
    "openai/",
    "azure/",
    "openrouter/openai/",
)
EXEC_SESSION_PROVIDER_PREFIXES: Tuple[str, ...] = (
    "openai/",
    "azure/",
    "openrouter/openai/",
)
# Compound model names that are billed as their base model.
EXEC_SESSION_MODEL_ALIASES: Dict[str, str] = {
    "gpt-5-codex": "gpt-5",
}


@dataclass(frozen=True)
class ModelPricing:
    """Per-token rates for one model, in USD.

    Every rate is optional; the ``*_above_200k_tokens`` rates override the
    base rate for the part of a category beyond the tiering threshold.
    """
    input_cost_per_token: Optional[float] = None
    output_cost_per_token: Optional[float] = None
    cache_creation_input_token_cost: Optional[float] = None
    cache_read_input_token_cost: Optional[float] = None
    input_cost_per_token_above_200k_tokens: Optional[float] = None
    output_cost_per_token_above_200k_tokens: Optional[float] = None
    cache_creation_input_token_cost_above_200k_tokens: Optional[float] = None
    cache_read_input_token_cost_above_200k_tokens: Optional[float] = None
    max_input_tokens: Optional[int] = None


PricingDataset = Mapping[str, ModelPricing]


class MatchKind(Enum):
    """How a model name was matched to a dataset key."""
    EXACT = "exact"
    PREFIXED = "prefixed"
    ALIAS = "alias"
    SUBSTRING = "substring"


@dataclass(frozen=True)
class PricingLookup:
    """Result of resolving a model name against a pricing dataset."""
    model: str
    matched_key: str
    kind: MatchKind
    pricing: ModelPricing
    candidates: Tuple[str, ...] = ()

    @property
    def ambiguous(self) -> bool:
        """True when the substring fallback matched more than one key."""
        return len(self.candidates) > 1


class PricingResolver:
    """Resolves model names for one log source against one dataset.

    Lookups are memoized per instance, so a resolver should live no longer
    than the aggregation pass it serves.
    """

    def __init__(
        self,
        dataset: PricingDataset,
        provider_prefixes: Sequence[str],
        aliases: Optional[Mapping[str, str]] = None,
    ):
        self.dataset = dataset
        self.provider_prefixes = tuple(provider_prefixes)
        self.aliases = dict(aliases or {})
        self._lowered_keys: Optional[List[Tuple[str, str]]] = None
        self._memo: Dict[str, Optional[PricingLookup]] = {}

    def lookup(self, model: str) -> Optional[PricingLookup]:
        """Resolve a model name.

        Order: bare name, then each provider prefix + name, then the alias
        table (bare and prefixed), then a case-insensitive substring match
        over the dataset keys in lexicographic order.

        Args:
            model: Model name as written in the log

        Returns:
            PricingLookup, or None when nothing matches
        """
        if model in self._memo:
            return self._memo[model]

        result = self._exact_or_prefixed(model, alias_of=None)
        if result is None and model in self.aliases:
            result = self._exact_or_prefixed(self.aliases[model], alias_of=model)
        if result is None:
            result = self._substring(model)

        self._memo[model] = result
        return result

    def pricing_for(self, model: str) -> Optional[ModelPricing]:
        result = self.lookup(model)
        return result.pricing if result is not None else None

    def _exact_or_prefixed(self, name: str, alias_of: Optional[str]) -> Optional[PricingLookup]:
        model = alias_of if alias_of is not None else name
        candidates = [name] + [f"{prefix}{name}" for prefix in self.provider_prefixes]
        for index, key in enumerate(candidates):
            pricing = self.dataset.get(key)
            if pricing is None:
                continue
            if alias_of is not None:
                kind = MatchKind.ALIAS
            else:
                kind = MatchKind.EXACT if index == 0 else MatchKind.PREFIXED
            return PricingLookup(model=model, matched_key=key, kind=kind, pricing=pricing)
        return None

    def _substring(self, model: str) -> Optional[PricingLookup]:
        if self._lowered_keys is None:
            self._lowered_keys = [(key, key.lower()) for key in sorted(self.dataset)]

        lowered = model.lower()
        if not lowered:
            return None

        matches = [
            key
            for key, comparison in self._lowered_keys
            if comparison and (lowered in comparison or comparison in lowered)
        ]
        if not matches:
            return None

        if len(matches) > 1:
            logger.warning(
                "Ambiguous pricing match for model %r: %d candidate keys (%s); using %r",
                model,
                len(matches),
                ", ".join(matches[:5]) + (", ..." if len(matches) > 5 else ""),
                matches[0],
            )

        return PricingLookup(
            model=model,
            matched_key=matches[0],
            kind=MatchKind.SUBSTRING,
            pricing=self.dataset[matches[0]],
            candidates=tuple(matches),
        )


def find_model_pricing(
    dataset: PricingDataset,
    model: str,
    provider_prefixes: Sequence[str],
    aliases: Optional[Mapping[str, str]] = None,
) -> Optional[ModelPricing]:
    """One-shot pricing lookup; see PricingResolver.lookup."""
    return PricingResolver(dataset, provider_prefixes, aliases).pricing_for(model)


class CostCalculator(ABC):
    """Turns token counts plus a pricing record into a USD amount."""

    @abstractmethod
    def cost(self, tokens, pricing: ModelPricing) -> float:
        raise NotImplementedError


class TieredCostCalculator(CostCalculator):
    """Per-event billing for chat-log entries.

    Each category is billed independently. When a category exceeds the
    threshold and an above-threshold rate exists, tokens up to the
    threshold bill at the base rate (zero if absent) and the rest at the
    above-threshold rate.
    """

    def __init__(self, threshold: int = TIERED_THRESHOLD):
        self.threshold = threshold

    def _tiered(self, tokens: int, base: Optional[float], above: Optional[float]) -> float:
        if tokens == 0:
            return 0.0

        if tokens > self.threshold and above is not None:
            cost = float(tokens - self.threshold) * above
            if base is not None:
                cost += float(self.threshold) * base
            return cost

        return (base or 0.0) * float(tokens)

    def cost(self, tokens: ChatTokens, pricing: ModelPricing) -> float:
        return (
            self._tiered(
                tokens.input_tokens,
                pricing.input_cost_per_token,
                pricing.input_cost_per_token_above_200k_tokens,
            )
            + self._tiered(
                tokens.output_tokens,
                pricing.output_cost_per_token,
                pricing.output_cost_per_token_above_200k_tokens,
            )
            + self._tiered(
                tokens.cache_creation_input_tokens,
                pricing.cache_creation_input_token_cost,
                pricing.cache_creation_input_token_cost_above_200k_tokens,
            )
            + self._tiered(
                tokens.cache_read_input_tokens,
                pricing.cache_read_input_token_cost,
                pricing.cache_read_input_token_cost_above_200k_tokens,
            )
        )


class CachedInputCostCalculator(CostCalculator):
    """Per-model billing for exec-session token sums.

    Non-cached input bills at the input rate; cached input at the
    cache-read rate, or the input rate when no cache-read rate exists.
    No tiering.
    """

    def cost(self, tokens: ExecTokens, pricing: ModelPricing) -> float:
        non_cached = float(saturating_sub(tokens.input_tokens, tokens.cached_input_tokens))
        input_rate = pricing.input_cost_per_token or 0.0
        if pricing.cache_read_input_token_cost is not None:
            cache_read_rate = pricing.cache_read_input_token_cost
        else:
            cache_read_rate = input_rate
        output_rate = pricing.output_cost_per_token or 0.0

        return (
            non_cached * input_rate
            + float(tokens.cached_input_tokens) * cache_read_rate
            + float(tokens.output_tokens) * output_rate
        )


def calculate_chat_cost(tokens: ChatTokens, pricing: ModelPricing) -> float:
    return TieredCostCalculator().cost(tokens, pricing)


def calculate_exec_cost(tokens: ExecTokens, pricing: ModelPricing) -> float:
    return CachedInputCostCalculator().cost(tokens, pricing)
