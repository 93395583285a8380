# Rough per-token USD rates used for cost estimates on steps and runs.
# Unknown models are billed at the cheapest known tier.

from typing import Optional

MODEL_RATES: dict[str, tuple[float, float]] = {
    # model: (input per token, output per token)
    "gpt-4.1": (2.00 / 1_000_000, 8.00 / 1_000_000),
    "gpt-4.1-mini": (0.40 / 1_000_000, 1.60 / 1_000_000),
    "gpt-4o": (2.50 / 1_000_000, 10.00 / 1_000_000),
    "gpt-4o-mini": (0.15 / 1_000_000, 0.60 / 1_000_000),
    "gpt-4o-search-preview": (2.50 / 1_000_000, 10.00 / 1_000_000),
    "gpt-4o-mini-search-preview": (0.15 / 1_000_000, 0.60 / 1_000_000),
    "gpt-4-turbo": (0.01 / 1000, 0.03 / 1000),
    "gpt-4": (0.03 / 1000, 0.06 / 1000),
    "gpt-3.5-turbo": (0.0015 / 1000, 0.002 / 1000),
    "gemini-2.5-flash": (0.30 / 1_000_000, 2.50 / 1_000_000),
    "gemini-2.5-pro": (1.25 / 1_000_000, 10.00 / 1_000_000),
}


def cheapest_rate() -> tuple[float, float]:
    return min(MODEL_RATES.values(), key=lambda rate: rate[0] + rate[1])


def estimate_cost(model: Optional[str], input_tokens: int, output_tokens: int) -> float:
    input_rate, output_rate = MODEL_RATES.get(model or "", cheapest_rate())
    return input_tokens * input_rate + output_tokens * output_rate
