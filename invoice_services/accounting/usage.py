"""Token usage and cost accounting for model calls."""

from invoice_services.documents.schema import TokenUsage

INPUT_COST_PER_MILLION = 3  # currency units per 1M input tokens
OUTPUT_COST_PER_MILLION = 15  # currency units per 1M output tokens

# Floors applied to aggregate stream payloads so a zero-usage run never shows 0
MIN_DISPLAY_TOKENS = 1
MIN_DISPLAY_COST = 0.0001


def estimate_cost(input_tokens: int, output_tokens: int) -> float:
    """Estimate the cost of a call from its token counts.

    Args:
        input_tokens: Prompt tokens
        output_tokens: Completion tokens

    Returns:
        Estimated cost in currency units
    """
    return (input_tokens / 1_000_000 * INPUT_COST_PER_MILLION) + (
        output_tokens / 1_000_000 * OUTPUT_COST_PER_MILLION
    )


def calculate_token_usage(input_tokens: int | None = 0, output_tokens: int | None = 0) -> TokenUsage:
    """Build the usage record for a call.

    Missing counts (provider reported no usage) are treated as 0.

    Args:
        input_tokens: Prompt tokens
        output_tokens: Completion tokens

    Returns:
        TokenUsage with total and estimated cost derived
    """
    input_tokens = input_tokens or 0
    output_tokens = output_tokens or 0
    return TokenUsage(
        input=input_tokens,
        output=output_tokens,
        total=input_tokens + output_tokens,
        estimated_cost=estimate_cost(input_tokens, output_tokens),
    )


def display_token_usage(usage: TokenUsage) -> TokenUsage:
    """Apply display floors to usage shown with an aggregate view.

    Returns a new record; the stored usage is left untouched.
    """
    return TokenUsage(
        input=max(usage.input, MIN_DISPLAY_TOKENS),
        output=max(usage.output, MIN_DISPLAY_TOKENS),
        total=max(usage.input + usage.output, MIN_DISPLAY_TOKENS),
        estimated_cost=max(estimate_cost(usage.input, usage.output), MIN_DISPLAY_COST),
    )
