"""Hair phenotype inference for the image generation prompts.

The analysis reports facial features (beard, eyebrows, skin undertone,
apparent age) rather than scalp hair traits, because the recipient area
is by definition thin. This decision tree turns those features into the
texture, thickness, color and hairline style the generated images must
respect. Both the plan and the simulation use the same profile so the
two artifacts stay visually consistent.
"""

from __future__ import annotations

import re
from typing import Literal

from pydantic import BaseModel

from hairvis.models.contracts import AnalysisResult, PhenotypicFeatures

DEFAULT_NORWOOD_LEVEL = 3


class HairPhenotypeProfile(BaseModel):
    hair_texture: Literal["straight", "wavy", "curly"] = "wavy"
    hair_thickness: Literal["thin", "medium", "thick"] = "medium"
    color_palette: str = "Dark Brown"
    hairline_style: Literal["conservative_flat", "soft_m", "mature_receded"] = "soft_m"
    max_density_band: Literal["low", "medium", "high"] = "medium"
    risk_flags: list[str] = []


def norwood_level(norwood_scale: str | None) -> int:
    """Numeric Norwood level ("NW4", "Norwood 5A" -> 4, 5); defaults to 3."""
    digits = re.sub(r"\D", "", norwood_scale or "")
    if not digits:
        return DEFAULT_NORWOOD_LEVEL
    return int(digits[0])


def _texture(feat: PhenotypicFeatures) -> str:
    texture = "wavy"
    if feat.beard_presence and feat.beard_presence != "None":
        if feat.beard_texture == "Curly":
            texture = "curly"
        elif feat.beard_texture == "Wavy":
            texture = "wavy"
        else:
            texture = "straight"
    elif feat.eyebrow_density == "Thick" and feat.skin_undertone in ("Olive", "Warm"):
        texture = "wavy"
    elif feat.eyebrow_density == "Sparse" and feat.skin_undertone == "Cool":
        texture = "straight"
    # Never render curly hair without beard evidence for it.
    if texture == "curly" and feat.beard_presence in (None, "None"):
        texture = "wavy"
    return texture


def _thickness(feat: PhenotypicFeatures) -> str:
    if feat.beard_presence and feat.beard_presence != "None":
        return "medium" if feat.beard_texture == "Straight" else "thick"
    if feat.eyebrow_density == "Thick" and feat.eyebrow_color == "Dark":
        return "thick"
    if feat.eyebrow_density == "Sparse":
        return "thin"
    return "medium"


def _color(feat: PhenotypicFeatures) -> str:
    if feat.eyebrow_color == "Light":
        return "Light/Medium Ash Brown"
    return {
        "Cool": "Ash Brown / Cool Dark Brown",
        "Warm": "Warm Dark Chestnut",
        "Olive": "Matte Dark Black/Brown",
    }.get(feat.skin_undertone or "", "Dark Brown")


def _hairline(feat: PhenotypicFeatures, level: int, thickness: str) -> str:
    age = feat.apparent_age
    hairline = "soft_m"
    if (age is not None and age >= 40) or level >= 5:
        hairline = "mature_receded"
    elif age is not None and 30 <= age < 40:
        hairline = "soft_m"
    elif age is not None and age < 30 and level <= 3:
        hairline = "conservative_flat"
    if feat.skin_undertone == "Olive" and thickness == "thick" and hairline == "soft_m":
        hairline = "conservative_flat"
    return hairline


def derive_phenotype_profile(analysis: AnalysisResult) -> HairPhenotypeProfile:
    feat = analysis.phenotypic_features or PhenotypicFeatures()
    level = norwood_level(analysis.norwood_scale)
    thickness = _thickness(feat)

    if level <= 3:
        density = "high"
    elif level == 4:
        density = "medium"
    else:
        density = "low"

    return HairPhenotypeProfile(
        hair_texture=_texture(feat),
        hair_thickness=thickness,
        color_palette=_color(feat),
        hairline_style=_hairline(feat, level, thickness),
        max_density_band=density,
        risk_flags=["Limit density", "Focus frontal"] if level >= 6 else [],
    )
