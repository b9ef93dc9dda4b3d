"""Generation parameters and their mapping onto provider request fields.

The mapping functions are pure and total: every input string has a defined
output, so stored parameters from any client version can be submitted.
"""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

PROVIDER_MAX_RESOLUTION = "4K"
DEFAULT_ASPECT_RATIO = "2:3"

# Requested tier → provider tier; anything else falls back to the provider ceiling
RESOLUTION_TIERS: dict[str, str] = {
    "2k": "2K",
    "4k": "4K",
    "8k": PROVIDER_MAX_RESOLUTION,
}

ASPECT_RATIOS: dict[str, str] = {
    "full-body": "2:3",
    "waist-legs": "3:4",
}


class GenerationParams(BaseModel):
    """Structured styling parameters of a generation.

    Field names follow the client's camelCase wire format via aliases; every
    field has a default so stored parameter bags are always complete.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    preserve_head: Optional[bool] = Field(default=None, alias="preserveHead")
    preserve_other_garments: Optional[bool] = Field(default=None, alias="preserveOtherGarments")
    view: Optional[Literal["front", "back", "side"]] = Field(default=None)
    fit_strictness: Optional[int] = Field(default=None, ge=0, le=100, alias="fitStrictness")
    shadow_enforcement: Optional[bool] = Field(default=None, alias="shadowEnforcement")
    shadow_level: Optional[Literal["soft", "medium", "hard"]] = Field(
        default=None, alias="shadowLevel"
    )
    framing: Optional[Literal["preserve", "waist-legs", "full-body"]] = Field(default=None)
    resolution: Literal["2k", "4k", "8k"] = Field(default="4k")
    variations: int = Field(default=1, ge=1, le=3)
    quality: Optional[Literal["fast", "balanced", "hd"]] = Field(default=None)
    custom_prompt: Optional[str] = Field(default=None, max_length=2000, alias="customPrompt")

    def to_storage(self) -> dict:
        """Serialize for the generations.params JSON column (camelCase, no nulls)."""
        return self.model_dump(by_alias=True, exclude_none=True)


def resolution_tier(requested: str | None) -> str:
    """Map a requested resolution onto a provider-supported tier.

    Examples:
        "2k" → "2K", "8k" → "4K" (clamped to the provider ceiling),
        anything unrecognized → "4K"
    """
    if not requested:
        return PROVIDER_MAX_RESOLUTION
    return RESOLUTION_TIERS.get(requested.strip().lower(), PROVIDER_MAX_RESOLUTION)


def aspect_ratio(framing: str | None, view: str | None = None) -> str:
    """Map a framing choice onto a provider aspect ratio (portrait 2:3 by default).

    The view does not influence the ratio today.
    """
    if not framing:
        return DEFAULT_ASPECT_RATIO
    return ASPECT_RATIOS.get(framing, DEFAULT_ASPECT_RATIO)
