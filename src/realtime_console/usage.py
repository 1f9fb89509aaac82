"""Token usage and cost accounting.

Each completed assistant response reports token counts by modality and
direction, with a cached sub-count for inputs. The accountant prices each
response and adds the result to a running ledger. Accumulation is strictly
additive per category; the total is always the sum of the categories.
"""

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from realtime_console.config import PricingConfig
from realtime_console.transport.protocol import ResponseUsage

logger = logging.getLogger(__name__)

TOKENS_PER_UNIT = 1_000_000


class UsageCategory(Enum):
    """Cost categories tracked by the ledger."""

    TEXT_INPUT = "text_input"
    AUDIO_INPUT = "audio_input"
    TEXT_OUTPUT = "text_output"
    AUDIO_OUTPUT = "audio_output"
    CACHED_TEXT = "cached_text"
    CACHED_AUDIO = "cached_audio"


@dataclass(frozen=True)
class TokenUsage:
    """Token counts of one completed response.

    ``cached_*_tokens`` are subsets of the corresponding input counts.
    """

    text_input_tokens: int = 0
    audio_input_tokens: int = 0
    text_output_tokens: int = 0
    audio_output_tokens: int = 0
    cached_text_tokens: int = 0
    cached_audio_tokens: int = 0

    def __post_init__(self) -> None:
        for name, value in self.__dict__.items():
            if value < 0:
                raise ValueError(f"{name} must be non-negative, got {value}")

    @classmethod
    def from_response_usage(cls, usage: ResponseUsage) -> "TokenUsage":
        """Flatten the protocol usage block."""
        inputs = usage.input_token_details
        outputs = usage.output_token_details
        return cls(
            text_input_tokens=inputs.text_tokens,
            audio_input_tokens=inputs.audio_tokens,
            text_output_tokens=outputs.text_tokens,
            audio_output_tokens=outputs.audio_tokens,
            cached_text_tokens=inputs.cached_tokens_details.text_tokens,
            cached_audio_tokens=inputs.cached_tokens_details.audio_tokens,
        )


@dataclass(frozen=True)
class CostBreakdown:
    """Per-category cost of one response."""

    costs: dict[UsageCategory, float]

    @property
    def total(self) -> float:
        return math.fsum(self.costs.values())

    def __getitem__(self, category: UsageCategory) -> float:
        return self.costs[category]


def _zero_costs() -> dict[UsageCategory, float]:
    return {category: 0.0 for category in UsageCategory}


@dataclass
class UsageLedger:
    """Running token and cost totals for a session."""

    text_input_tokens: int = 0
    audio_input_tokens: int = 0
    text_output_tokens: int = 0
    audio_output_tokens: int = 0
    cached_text_tokens: int = 0
    cached_audio_tokens: int = 0
    responses: int = 0
    cost_by_category: dict[UsageCategory, float] = field(default_factory=_zero_costs)

    @property
    def total_cost(self) -> float:
        """Sum of all category costs."""
        return math.fsum(self.cost_by_category.values())

    @property
    def text_input_cost(self) -> float:
        """Text input cost including the cached-text portion."""
        return (
            self.cost_by_category[UsageCategory.TEXT_INPUT]
            + self.cost_by_category[UsageCategory.CACHED_TEXT]
        )

    @property
    def audio_input_cost(self) -> float:
        """Audio input cost including the cached-audio portion."""
        return (
            self.cost_by_category[UsageCategory.AUDIO_INPUT]
            + self.cost_by_category[UsageCategory.CACHED_AUDIO]
        )

    @property
    def text_output_cost(self) -> float:
        return self.cost_by_category[UsageCategory.TEXT_OUTPUT]

    @property
    def audio_output_cost(self) -> float:
        return self.cost_by_category[UsageCategory.AUDIO_OUTPUT]

    def format_total(self) -> str:
        return f"${self.total_cost:.4f}"

    def snapshot(self) -> dict[str, Any]:
        """Plain-dict view for display or serialization."""
        return {
            "text_input_tokens": self.text_input_tokens,
            "audio_input_tokens": self.audio_input_tokens,
            "text_output_tokens": self.text_output_tokens,
            "audio_output_tokens": self.audio_output_tokens,
            "cached_text_tokens": self.cached_text_tokens,
            "cached_audio_tokens": self.cached_audio_tokens,
            "responses": self.responses,
            "cost_by_category": {
                category.value: cost for category, cost in self.cost_by_category.items()
            },
            "total_cost": self.total_cost,
        }


class UsageAccountant:
    """Prices completed responses and maintains the session ledger.

    Example:
        ```python
        accountant = UsageAccountant()
        accountant.apply_usage(TokenUsage(text_input_tokens=1000, cached_text_tokens=200))
        print(accountant.ledger.format_total())
        ```
    """

    def __init__(self, pricing: PricingConfig | None = None) -> None:
        self.pricing = pricing or PricingConfig()
        self.ledger = UsageLedger()

    def compute_costs(self, usage: TokenUsage) -> CostBreakdown:
        """Price one response without touching the ledger.

        Billable (uncached) input is charged at the modality's input rate and
        the cached subset at its cached rate. Outputs are never cached.
        """
        billable_text = usage.text_input_tokens - usage.cached_text_tokens
        billable_audio = usage.audio_input_tokens - usage.cached_audio_tokens
        if billable_text < 0 or billable_audio < 0:
            logger.warning(
                "Cached tokens exceed input tokens; billing cached portion only",
                extra={
                    "text_input_tokens": usage.text_input_tokens,
                    "cached_text_tokens": usage.cached_text_tokens,
                    "audio_input_tokens": usage.audio_input_tokens,
                    "cached_audio_tokens": usage.cached_audio_tokens,
                },
            )
            billable_text = max(0, billable_text)
            billable_audio = max(0, billable_audio)

        rates = self.pricing
        return CostBreakdown(
            costs={
                UsageCategory.TEXT_INPUT: billable_text / TOKENS_PER_UNIT * rates.text_input,
                UsageCategory.AUDIO_INPUT: billable_audio / TOKENS_PER_UNIT * rates.audio_input,
                UsageCategory.TEXT_OUTPUT: (
                    usage.text_output_tokens / TOKENS_PER_UNIT * rates.text_output
                ),
                UsageCategory.AUDIO_OUTPUT: (
                    usage.audio_output_tokens / TOKENS_PER_UNIT * rates.audio_output
                ),
                UsageCategory.CACHED_TEXT: (
                    usage.cached_text_tokens / TOKENS_PER_UNIT * rates.cached_text
                ),
                UsageCategory.CACHED_AUDIO: (
                    usage.cached_audio_tokens / TOKENS_PER_UNIT * rates.cached_audio
                ),
            }
        )

    def apply_usage(self, usage: TokenUsage) -> CostBreakdown:
        """Add one completed response to the ledger.

        Args:
            usage: Token counts of the response

        Returns:
            The per-category deltas that were added
        """
        breakdown = self.compute_costs(usage)
        ledger = self.ledger

        ledger.text_input_tokens += usage.text_input_tokens
        ledger.audio_input_tokens += usage.audio_input_tokens
        ledger.text_output_tokens += usage.text_output_tokens
        ledger.audio_output_tokens += usage.audio_output_tokens
        ledger.cached_text_tokens += usage.cached_text_tokens
        ledger.cached_audio_tokens += usage.cached_audio_tokens
        ledger.responses += 1

        for category, cost in breakdown.costs.items():
            ledger.cost_by_category[category] += cost

        logger.debug(
            "Usage applied",
            extra={"response_cost": breakdown.total, "total_cost": ledger.total_cost},
        )
        return breakdown

    def apply_response_done(self, event: dict[str, Any]) -> CostBreakdown | None:
        """Apply the usage block of a ``response.done`` event.

        Returns:
            The applied deltas, or None if the event carries no usage
        """
        usage = ResponseUsage.from_response_done(event)
        if usage is None:
            return None
        return self.apply_usage(TokenUsage.from_response_usage(usage))

    def reset(self) -> None:
        """Start a fresh ledger."""
        self.ledger = UsageLedger()
