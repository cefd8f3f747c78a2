# app/result_normalizer.py
"""
Maps the raw JSON object returned by the analysis model onto the canonical
ScanResult variants.

normalize() is total: any JSON value goes in, a well-formed result comes out.
Missing or invalid fields fall back to the defaults below, list fields are
truncated to their caps and food-only fields are only read for Food.
"""
from __future__ import annotations
from typing import Any, Dict, List, Optional

from app.data_model import (
    MAX_ALTERNATIVES,
    MAX_INGREDIENT_LIST_CHARS,
    MAX_INGREDIENTS,
    MAX_NUTRIENTS,
    NUTRI_GRADES,
    Alternative,
    Category,
    CosmeticResult,
    DietarySuitability,
    FoodResult,
    IngredientAnalysis,
    MacroNutrient,
    NutrientLevel,
    OtherResult,
    RiskLevel,
    ScanResult,
    ScanStatus,
)

DEFAULT_PRODUCT_NAME = "Unknown Product"
DEFAULT_ICON = "📦"
DEFAULT_STATUS = ScanStatus.CAUTION
DEFAULT_SCORE = 50
DEFAULT_EXPLANATION = "Analysis complete."
DEFAULT_INGREDIENT_LIST = "Ingredients not readable."

# A poor letter grade caps the personalized score.
GRADE_SCORE_CAPS = {"D": 40, "E": 20}

_RISK_ALIASES = {
    "safe": RiskLevel.SAFE,
    "low": RiskLevel.SAFE,
    "moderate": RiskLevel.MODERATE,
    "medium": RiskLevel.MODERATE,
    "high risk": RiskLevel.HIGH_RISK,
    "highrisk": RiskLevel.HIGH_RISK,
    "high_risk": RiskLevel.HIGH_RISK,
    "high": RiskLevel.HIGH_RISK,
}

_LEVEL_ALIASES = {
    "low": NutrientLevel.LOW,
    "medium": NutrientLevel.MEDIUM,
    "moderate": NutrientLevel.MEDIUM,
    "high": NutrientLevel.HIGH,
}

_SUITABILITY_KEYS = {
    "vegan": "vegan",
    "vegetarian": "vegetarian",
    "glutenFree": "gluten_free",
    "gluten_free": "gluten_free",
    "lactoseFree": "lactose_free",
    "lactose_free": "lactose_free",
}


def _text(value: Any, default: str = "") -> str:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return default


def _pick(raw: Dict[str, Any], *keys: str) -> Any:
    """First present key wins; the model answers in camelCase, stored rows in snake_case."""
    for key in keys:
        if key in raw and raw[key] is not None:
            return raw[key]
    return None


def _as_list(value: Any) -> List[Any]:
    return value if isinstance(value, list) else []


def _coerce_category(value: Any) -> Category:
    if value is None or (isinstance(value, str) and not value.strip()):
        return Category.FOOD
    if isinstance(value, str):
        for category in Category:
            if value.strip().lower() == category.value.lower():
                return category
    return Category.OTHER


def _coerce_status(value: Any) -> ScanStatus:
    if isinstance(value, str):
        try:
            return ScanStatus(value.strip().upper())
        except ValueError:
            pass
    return DEFAULT_STATUS


def _coerce_score(value: Any) -> int:
    # bool is an int subclass; true/false is not a score
    if isinstance(value, bool):
        return DEFAULT_SCORE
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return DEFAULT_SCORE
    if not isinstance(value, (int, float)) or value != value:
        return DEFAULT_SCORE
    return int(round(min(max(value, 0), 100)))


def _coerce_grade(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    grade = value.strip().upper()
    return grade if grade in NUTRI_GRADES else None


def apply_grade_policy(score: int, grade: Optional[str]) -> int:
    cap = GRADE_SCORE_CAPS.get(grade or "")
    return min(score, cap) if cap is not None else score


def _coerce_ingredients(value: Any) -> List[IngredientAnalysis]:
    out: List[IngredientAnalysis] = []
    for item in _as_list(value):
        if not isinstance(item, dict):
            continue
        name = _text(item.get("name"))
        if not name:
            continue
        risk_raw = _pick(item, "riskLevel", "risk_level")
        risk = _RISK_ALIASES.get(risk_raw.strip().lower(), RiskLevel.MODERATE) if isinstance(risk_raw, str) else RiskLevel.MODERATE
        out.append(IngredientAnalysis(name=name, risk_level=risk, description=_text(item.get("description"))))
        if len(out) == MAX_INGREDIENTS:
            break
    return out


def _coerce_alternatives(value: Any) -> List[Alternative]:
    out: List[Alternative] = []
    for item in _as_list(value):
        if not isinstance(item, dict):
            continue
        name = _text(item.get("name"))
        if not name:
            continue
        out.append(Alternative(name=name, reason=_text(item.get("reason"))))
        if len(out) == MAX_ALTERNATIVES:
            break
    return out


def _coerce_nutrients(value: Any) -> List[MacroNutrient]:
    out: List[MacroNutrient] = []
    for item in _as_list(value):
        if not isinstance(item, dict):
            continue
        name = _text(item.get("name"))
        if not name:
            continue
        level_raw = item.get("level")
        level = _LEVEL_ALIASES.get(level_raw.strip().lower(), NutrientLevel.MEDIUM) if isinstance(level_raw, str) else NutrientLevel.MEDIUM
        out.append(MacroNutrient(name=name, value=_text(item.get("value"), "-"), level=level))
        if len(out) == MAX_NUTRIENTS:
            break
    return out


def _coerce_suitability(value: Any) -> Optional[DietarySuitability]:
    if not isinstance(value, dict):
        return None
    flags = {}
    for key, attr in _SUITABILITY_KEYS.items():
        if isinstance(value.get(key), bool):
            flags[attr] = value[key]
    return DietarySuitability(**flags) if flags else None


def _cap_text(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 1].rstrip() + "…"


def normalize(raw: Any) -> ScanResult:
    """Build the canonical result from an untrusted model payload."""
    if not isinstance(raw, dict):
        raw = {}

    category = _coerce_category(raw.get("category"))
    score = _coerce_score(raw.get("score"))

    common = dict(
        product_name=_text(_pick(raw, "productName", "product_name"), DEFAULT_PRODUCT_NAME),
        icon=_text(raw.get("icon"), DEFAULT_ICON),
        status=_coerce_status(raw.get("status")),
        explanation=_text(raw.get("explanation"), DEFAULT_EXPLANATION),
        full_ingredient_list=_cap_text(
            _text(_pick(raw, "fullIngredientList", "full_ingredient_list"), DEFAULT_INGREDIENT_LIST),
            MAX_INGREDIENT_LIST_CHARS,
        ),
        ingredients=_coerce_ingredients(raw.get("ingredients")),
        alternatives=_coerce_alternatives(raw.get("alternatives")),
    )

    if category is Category.FOOD:
        grade = _coerce_grade(_pick(raw, "nutriScore", "nutri_score"))
        return FoodResult(
            score=apply_grade_policy(score, grade),
            nutri_score=grade,
            nutrition_advisor=_coerce_nutrients(_pick(raw, "nutritionAdvisor", "nutrition_advisor")),
            dietary_suitability=_coerce_suitability(_pick(raw, "dietarySuitability", "dietary_suitability")),
            **common,
        )
    if category is Category.COSMETIC:
        return CosmeticResult(score=score, **common)
    return OtherResult(score=score, **common)
