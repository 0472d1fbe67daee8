"""Prompt templates for the Gemini analysis and image calls.

Wording is deliberately non-clinical: outputs are visual estimates and
simulations, never a diagnosis or a guaranteed result.
"""

from __future__ import annotations

from hairvis.services.phenotype import HairPhenotypeProfile

ANALYSIS_PROMPT = """\
You are a specialized assistant for VISUAL HAIR ANALYSIS.

ROLE: Provide visual estimations and planning data.
PROHIBITED: Do not provide a medical diagnosis. Do not use words like
"disease", "cure" or "pathology".

TASK:
1. Recipient area (front/crown views): estimate the Norwood pattern and the
   graft capacity for zones 1-3. On the FRONT view define two nested polygons
   with coordinates normalized to 0-1: hairline_design_polygon (outer boundary
   of the transplant area) and high_density_zone_polygon (inner zone).
2. Donor area (donor/side views): rate visible density as
   Poor/Moderate/Good/Excellent and estimate the safe graft capacity.
3. Technique and phenotype: suggest a technique (Sapphire FUE, DHI) and
   describe facial phenotype (apparent age, skin tone, beard, eyebrows).

Output strict JSON.
"""

# Label sent ahead of each photo, in the order the photos are attached.
VIEW_LABELS: dict[str, str] = {
    "front": "VIEW: FRONT (Primary Recipient)",
    "donor": "VIEW: DONOR (Primary Source - Analyze Density)",
    "left": "VIEW: SIDE LEFT (Temple & Temporal Points)",
    "crown": "VIEW: CROWN (Vertex)",
}

_POINT_LIST = {
    "type": "ARRAY",
    "items": {"type": "OBJECT", "properties": {"x": {"type": "NUMBER"}, "y": {"type": "NUMBER"}}},
}

ANALYSIS_SCHEMA: dict = {
    "type": "OBJECT",
    "properties": {
        "diagnosis": {
            "type": "OBJECT",
            "properties": {
                "norwood_scale": {"type": "STRING"},
                "analysis_summary": {"type": "STRING"},
            },
            "required": ["norwood_scale", "analysis_summary"],
        },
        "technical_metrics": {
            "type": "OBJECT",
            "properties": {
                "graft_count_min": {"type": "INTEGER"},
                "graft_count_max": {"type": "INTEGER"},
                "graft_distribution": {
                    "type": "OBJECT",
                    "properties": {
                        "zone_1": {"type": "INTEGER"},
                        "zone_2": {"type": "INTEGER"},
                        "zone_3": {"type": "INTEGER"},
                    },
                },
                "estimated_session_time_hours": {"type": "NUMBER"},
                "suggested_technique": {"type": "STRING"},
                "technique_reasoning": {"type": "STRING"},
            },
            "required": ["graft_count_min", "graft_count_max", "suggested_technique"],
        },
        "donor_assessment": {
            "type": "OBJECT",
            "properties": {
                "density_rating": {
                    "type": "STRING",
                    "enum": ["Poor", "Moderate", "Good", "Excellent"],
                },
                "estimated_hairs_per_cm2": {"type": "INTEGER"},
                "total_safe_capacity_grafts": {"type": "INTEGER"},
                "donor_condition_summary": {"type": "STRING"},
            },
            "required": ["density_rating"],
        },
        "scalp_geometry": {
            "type": "OBJECT",
            "properties": {
                "hairline_design_polygon": _POINT_LIST,
                "high_density_zone_polygon": _POINT_LIST,
            },
        },
        "phenotypic_features": {
            "type": "OBJECT",
            "properties": {
                "apparent_age": {"type": "INTEGER"},
                "skin_tone": {"type": "STRING", "enum": ["Light", "Medium", "Dark"]},
                "skin_undertone": {"type": "STRING", "enum": ["Cool", "Warm", "Olive"]},
                "beard_presence": {"type": "STRING", "enum": ["None", "Stubble", "Full"]},
                "beard_texture": {"type": "STRING", "enum": ["Straight", "Wavy", "Curly"]},
                "eyebrow_density": {"type": "STRING", "enum": ["Sparse", "Medium", "Thick"]},
                "eyebrow_color": {"type": "STRING", "enum": ["Light", "Dark"]},
            },
        },
    },
    "required": ["diagnosis", "technical_metrics", "donor_assessment"],
}


def plan_prompt(profile: HairPhenotypeProfile) -> str:
    return f"""\
You are a medical visualization expert. Draw a SURGICAL PLAN over the
provided frontal photo. Keep the exact camera angle, head position and
background of the input.

- A red line outlines the new frontal hairline boundary ({profile.hairline_style}).
- A translucent blue zone behind it marks {profile.max_density_band}-density placement.
- The patient's natural hair color is {profile.color_palette}.

Clinical, neutral lighting. No text overlays, no top-down or angled views,
no fashion photography, no exaggerated density.
"""


def simulation_prompt(profile: HairPhenotypeProfile, *, has_plan: bool) -> str:
    plan_line = (
        "A SURGICAL PLAN image is attached: place new hair only inside its marked zones."
        if has_plan
        else "Apply the Rule of Thirds for a balanced hairline height."
    )
    risk = f"\nCONSTRAINTS: {', '.join(profile.risk_flags)}." if profile.risk_flags else ""
    return f"""\
ROLE: You are a visual simulation assistant.
GOAL: Generate a realistic 12-month post-procedure SIMULATION for the PRIMARY IMAGE.

The output MUST keep the exact camera angle, perspective and head position
of the PRIMARY IMAGE. Do not change the face, expression or background.
{plan_line}

HAIR PHENOTYPE (strictly adhere):
- Texture: {profile.hair_texture}
- Thickness: {profile.hair_thickness}
- Color: {profile.color_palette}
- Style: {profile.hairline_style}
- Density: {profile.max_density_band}{risk}

REALISM: add micro-irregularities and a density gradient.
"""
