"""Prompt validation and safety screening before tasks reach the provider."""

PROMPT_MAX_LENGTH = 2000

PROMPT_BLOCKLIST = (
    "nude",
    "naked",
    "explicit",
    "pornographic",
    "nsfw",
)


def is_safe_prompt(prompt: str) -> bool:
    """Return True if the prompt contains none of the blocked terms."""
    lower = prompt.lower()
    return not any(term in lower for term in PROMPT_BLOCKLIST)


def validate_prompt(prompt: str) -> str:
    """Validate prompt text for image generation.

    Args:
        prompt: Styling prompt from the client

    Returns:
        Validated prompt (unchanged if valid)

    Raises:
        ValueError: If prompt is empty, too long, or contains blocked terms
    """
    if not prompt or not prompt.strip():
        raise ValueError("Prompt cannot be empty")

    if len(prompt) > PROMPT_MAX_LENGTH:
        raise ValueError(
            f"Prompt exceeds maximum length of {PROMPT_MAX_LENGTH} characters (got {len(prompt)})"
        )

    if not is_safe_prompt(prompt):
        raise ValueError("Prompt contains disallowed content")

    return prompt
