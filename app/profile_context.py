# app/profile_context.py
from __future__ import annotations
from dataclasses import dataclass
from typing import Iterable, Optional

from app.data_model import AppLanguage, HealthCondition, UserProfile
from app.result_normalizer import GRADE_SCORE_CAPS

NONE_SENTINEL = "None"
MAX_FIELD_CHARS = 500


@dataclass(frozen=True)
class ProfileContext:
    condition_label: str
    context: str
    symptoms: str
    language: AppLanguage

    @property
    def language_name(self) -> str:
        return self.language.display_name


def _join(items: Optional[Iterable[str]]) -> str:
    cleaned = [s.strip() for s in (items or []) if isinstance(s, str) and s.strip()]
    if not cleaned:
        return NONE_SENTINEL
    joined = ", ".join(cleaned)
    return joined[:MAX_FIELD_CHARS]


def _condition_label(profile: UserProfile) -> str:
    if profile.condition is HealthCondition.MORE_DISEASES:
        name = (profile.custom_condition_name or "").strip() or "Unspecified"
        return f"Specific Condition: {name}"[:MAX_FIELD_CHARS]
    return profile.condition.value


def build_profile_context(profile: UserProfile) -> ProfileContext:
    """Deterministic, bounded summary of the profile for the analysis prompt."""
    return ProfileContext(
        condition_label=_condition_label(profile),
        context=_join(profile.additional_context),
        symptoms=_join(profile.current_symptoms),
        language=profile.language or AppLanguage.EN,
    )


def render_system_instruction(ctx: ProfileContext) -> str:
    caps = ", ".join(f"grade {g} means score <= {cap}" for g, cap in sorted(GRADE_SCORE_CAPS.items()))
    lang = ctx.language_name
    return (
        "You are an expert health assistant. Analyze a product label (Food/Cosmetic) "
        "based on this profile:\n"
        f"Profile: {ctx.condition_label}\n"
        f"Context: {ctx.context}\n"
        f"Symptoms: {ctx.symptoms}\n\n"
        f"OUTPUT LANGUAGE: {lang}. All text fields in the JSON response must be in {lang}.\n\n"
        "RULES:\n"
        "1. DO NOT transcribe the entire label text.\n"
        "2. 'fullIngredientList' MAX 30 words.\n"
        "3. 'explanation' MAX 2 sentences.\n"
        "4. Provide short, professional medical reasoning.\n"
        "5. 'score' (0-100) rates suitability for THIS profile, not general nutrition.\n"
        "6. 'nutriScore' (A-E) is an absolute food grade; use 'N/A' for non-food. "
        f"Keep them consistent: {caps}.\n"
        "7. At most 10 ingredients and 3 alternatives.\n"
        "8. Ensure valid JSON."
    )
