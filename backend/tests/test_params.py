"""Tests for generation parameter parsing and provider field mapping.

Tests focus on:
- Resolution tiers clamp to the provider ceiling
- Framing maps to an aspect ratio, with a portrait default
- Stored parameter bags round through the camelCase wire format
"""

import pytest
from pydantic import ValidationError

from composit.services.generation.params import GenerationParams, aspect_ratio, resolution_tier
from composit.services.safety import PROMPT_MAX_LENGTH, is_safe_prompt, validate_prompt


@pytest.mark.parametrize(
    "requested, expected",
    [
        ("2k", "2K"),
        ("4k", "4K"),
        ("8k", "4K"),
        ("8K", "4K"),
        (None, "4K"),
        ("", "4K"),
        ("16k", "4K"),
    ],
)
def test_resolution_tier(requested, expected):
    assert resolution_tier(requested) == expected


@pytest.mark.parametrize(
    "framing, view, expected",
    [
        ("full-body", None, "2:3"),
        ("waist-legs", "front", "3:4"),
        ("preserve", "back", "2:3"),
        (None, "side", "2:3"),
        ("panorama", None, "2:3"),
    ],
)
def test_aspect_ratio(framing, view, expected):
    assert aspect_ratio(framing, view) == expected


def test_params_defaults():
    """An empty parameter bag yields one 4k variation."""
    params = GenerationParams.model_validate({})

    assert params.variations == 1
    assert params.resolution == "4k"
    assert params.framing is None


def test_params_accept_camel_case_and_drop_nulls():
    params = GenerationParams.model_validate(
        {
            "preserveHead": True,
            "fitStrictness": 70,
            "shadowLevel": "soft",
            "framing": "waist-legs",
            "variations": 3,
            "unknownField": "ignored",
        }
    )

    assert params.preserve_head is True
    assert params.fit_strictness == 70
    assert params.to_storage() == {
        "preserveHead": True,
        "fitStrictness": 70,
        "shadowLevel": "soft",
        "framing": "waist-legs",
        "resolution": "4k",
        "variations": 3,
    }


@pytest.mark.parametrize("variations", [0, 4])
def test_params_reject_out_of_range_variations(variations):
    with pytest.raises(ValidationError):
        GenerationParams.model_validate({"variations": variations})


def test_params_reject_unknown_resolution():
    with pytest.raises(ValidationError):
        GenerationParams.model_validate({"resolution": "16k"})


def test_prompt_screening():
    assert is_safe_prompt("Linen dress, golden hour")
    assert not is_safe_prompt("NSFW editorial")

    assert validate_prompt("Linen dress") == "Linen dress"
    with pytest.raises(ValueError, match="empty"):
        validate_prompt("   ")
    with pytest.raises(ValueError, match="maximum length"):
        validate_prompt("x" * (PROMPT_MAX_LENGTH + 1))
    with pytest.raises(ValueError, match="disallowed"):
        validate_prompt("a naked mannequin")
