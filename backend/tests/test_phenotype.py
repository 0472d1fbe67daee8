"""Tests for the hair phenotype decision tree and the prompts built from it."""

import pytest

from hairvis.models.contracts import AnalysisResult, Diagnosis, PhenotypicFeatures
from hairvis.services.phenotype import HairPhenotypeProfile, derive_phenotype_profile, norwood_level
from hairvis.services.prompts import plan_prompt, simulation_prompt


def _analysis(norwood: str | None = "NW3", **features) -> AnalysisResult:
    return AnalysisResult(
        diagnosis=Diagnosis(norwood_scale=norwood),
        phenotypic_features=PhenotypicFeatures(**features) if features else None,
    )


class TestNorwoodLevel:
    @pytest.mark.parametrize(
        ("scale", "level"),
        [("NW4", 4), ("Norwood 5A", 5), ("nw2", 2), ("Class 6", 6), (None, 3), ("", 3), ("unknown", 3)],
    )
    def test_levels(self, scale, level):
        assert norwood_level(scale) == level


class TestDeriveProfile:
    """Facial features drive texture, thickness, color and hairline."""

    def test_defaults_without_features(self):
        assert derive_phenotype_profile(_analysis()) == HairPhenotypeProfile(max_density_band="high")

    def test_curly_beard(self):
        profile = derive_phenotype_profile(_analysis(beard_presence="Full", beard_texture="Curly"))
        assert profile.hair_texture == "curly"
        assert profile.hair_thickness == "thick"

    def test_straight_beard(self):
        profile = derive_phenotype_profile(_analysis(beard_presence="Stubble", beard_texture="Straight"))
        assert profile.hair_texture == "straight"
        assert profile.hair_thickness == "medium"

    def test_no_beard_never_curly(self):
        profile = derive_phenotype_profile(_analysis(beard_presence="None", beard_texture="Curly"))
        assert profile.hair_texture == "wavy"

    def test_sparse_cool_eyebrows(self):
        profile = derive_phenotype_profile(_analysis(eyebrow_density="Sparse", skin_undertone="Cool"))
        assert profile.hair_texture == "straight"
        assert profile.hair_thickness == "thin"
        assert profile.color_palette == "Ash Brown / Cool Dark Brown"

    def test_light_eyebrows_override_undertone(self):
        profile = derive_phenotype_profile(_analysis(eyebrow_color="Light", skin_undertone="Warm"))
        assert profile.color_palette == "Light/Medium Ash Brown"

    @pytest.mark.parametrize(
        ("age", "norwood", "hairline"),
        [
            (25, "NW2", "conservative_flat"),
            (25, "NW4", "soft_m"),
            (35, "NW3", "soft_m"),
            (45, "NW2", "mature_receded"),
            (None, "NW5", "mature_receded"),
        ],
    )
    def test_hairline_style(self, age, norwood, hairline):
        profile = derive_phenotype_profile(_analysis(norwood, apparent_age=age))
        assert profile.hairline_style == hairline

    def test_olive_thick_flattens_soft_m(self):
        profile = derive_phenotype_profile(
            _analysis("NW3", apparent_age=35, skin_undertone="Olive", eyebrow_density="Thick", eyebrow_color="Dark")
        )
        assert profile.hair_thickness == "thick"
        assert profile.hairline_style == "conservative_flat"

    @pytest.mark.parametrize(
        ("norwood", "band"), [("NW2", "high"), ("NW3", "high"), ("NW4", "medium"), ("NW5", "low"), ("NW7", "low")]
    )
    def test_density_band(self, norwood, band):
        assert derive_phenotype_profile(_analysis(norwood)).max_density_band == band

    def test_risk_flags_for_advanced_loss(self):
        assert derive_phenotype_profile(_analysis("NW6")).risk_flags == ["Limit density", "Focus frontal"]
        assert derive_phenotype_profile(_analysis("NW5")).risk_flags == []


class TestPrompts:
    """Both images are prompted from the same profile."""

    PROFILE = HairPhenotypeProfile(
        hair_texture="curly",
        hair_thickness="thick",
        color_palette="Warm Dark Chestnut",
        hairline_style="mature_receded",
        max_density_band="low",
        risk_flags=["Limit density"],
    )

    def test_plan_prompt(self):
        prompt = plan_prompt(self.PROFILE)
        assert "mature_receded" in prompt
        assert "low-density" in prompt
        assert "Warm Dark Chestnut" in prompt

    def test_simulation_prompt_with_plan(self):
        prompt = simulation_prompt(self.PROFILE, has_plan=True)
        assert "SURGICAL PLAN image is attached" in prompt
        assert "Texture: curly" in prompt
        assert "CONSTRAINTS: Limit density." in prompt

    def test_simulation_prompt_without_plan(self):
        prompt = simulation_prompt(HairPhenotypeProfile(), has_plan=False)
        assert "Rule of Thirds" in prompt
        assert "CONSTRAINTS" not in prompt
