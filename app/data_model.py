# data_model.py

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional

# --- Limits ---

MAX_INGREDIENTS = 10
MAX_ALTERNATIVES = 3
MAX_NUTRIENTS = 5
MAX_INGREDIENT_LIST_CHARS = 600
MAX_CACHED_HISTORY = 10

NUTRI_GRADES = ("A", "B", "C", "D", "E")


# --- Profile Models ---

class HealthCondition(str, Enum):
    PREGNANCY = "Pregnancy"
    CANCER_CARE = "Cancer Care"
    AUTOIMMUNE = "Autoimmune"
    ALLERGIES = "Allergies"
    GENERAL_HEALTH = "General Health"
    MORE_DISEASES = "More Diseases"  # custom condition, named by the user
    NONE = "None"


class AppLanguage(str, Enum):
    EN = "en"
    ID = "id"
    AR = "ar"
    FR = "fr"
    ZH = "zh"

    @property
    def display_name(self) -> str:
        return LANGUAGE_NAMES[self]


LANGUAGE_NAMES = {
    AppLanguage.EN: "English",
    AppLanguage.ID: "Bahasa Indonesia",
    AppLanguage.AR: "Arabic",
    AppLanguage.FR: "French",
    AppLanguage.ZH: "Simplified Chinese",
}


@dataclass
class UserProfile:
    name: str
    condition: HealthCondition = HealthCondition.NONE
    custom_condition_name: Optional[str] = None
    additional_context: List[str] = field(default_factory=list)  # screening answers
    current_symptoms: List[str] = field(default_factory=list)
    language: AppLanguage = AppLanguage.EN


# --- Scan Result Models ---

class ScanStatus(str, Enum):
    SAFE = "SAFE"
    CAUTION = "CAUTION"
    AVOID = "AVOID"


class Category(str, Enum):
    FOOD = "Food"
    COSMETIC = "Cosmetic"
    OTHER = "Other"


class RiskLevel(str, Enum):
    SAFE = "Safe"
    MODERATE = "Moderate"
    HIGH_RISK = "High Risk"


class NutrientLevel(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


class FailureKind(str, Enum):
    MISSING_CREDENTIAL = "missing_credential"
    ANALYSIS_FAILED = "analysis_failed"
    ACCESS_DENIED = "access_denied"    # 403: billing / access configuration
    RATE_LIMITED = "rate_limited"      # 429: transient quota


@dataclass
class IngredientAnalysis:
    name: str
    risk_level: RiskLevel
    description: str = ""


@dataclass
class MacroNutrient:
    name: str           # e.g. 'Sugar', 'Saturated Fat'
    value: str          # e.g. '1.8g'
    level: NutrientLevel


@dataclass
class DietarySuitability:
    vegan: bool = False
    vegetarian: bool = False
    gluten_free: bool = False
    lactose_free: bool = False


@dataclass
class Alternative:
    name: str
    reason: str = ""


@dataclass
class ScanResult:
    """Fields shared by every result variant. Use one of the subclasses."""
    product_name: str
    status: ScanStatus
    score: int  # 0-100, relative to the user's profile
    explanation: str
    icon: str = "📦"
    full_ingredient_list: str = ""
    ingredients: List[IngredientAnalysis] = field(default_factory=list)
    alternatives: List[Alternative] = field(default_factory=list)
    failure: Optional[FailureKind] = None

    category: ClassVar[Category]


@dataclass
class FoodResult(ScanResult):
    nutri_score: Optional[str] = None
    nutrition_advisor: List[MacroNutrient] = field(default_factory=list)
    dietary_suitability: Optional[DietarySuitability] = None

    category: ClassVar[Category] = Category.FOOD


@dataclass
class CosmeticResult(ScanResult):
    category: ClassVar[Category] = Category.COSMETIC


@dataclass
class OtherResult(ScanResult):
    category: ClassVar[Category] = Category.OTHER


RESULT_TYPES = {
    Category.FOOD: FoodResult,
    Category.COSMETIC: CosmeticResult,
    Category.OTHER: OtherResult,
}


@dataclass
class ScanHistoryItem:
    id: str
    timestamp: int  # epoch milliseconds, taken when the scan was recorded
    result: ScanResult
    is_favorite: bool = False


# --- Serialization ---

def profile_to_dict(profile: UserProfile) -> dict:
    return {
        "name": profile.name,
        "condition": profile.condition.value,
        "custom_condition_name": profile.custom_condition_name,
        "additional_context": list(profile.additional_context),
        "current_symptoms": list(profile.current_symptoms),
        "language": profile.language.value,
    }


def dict_to_profile(data: dict) -> UserProfile:
    try:
        condition = HealthCondition(data.get("condition"))
    except ValueError:
        condition = HealthCondition.NONE
    try:
        language = AppLanguage(data.get("language") or AppLanguage.EN.value)
    except ValueError:
        language = AppLanguage.EN
    return UserProfile(
        name=data.get("name") or "",
        condition=condition,
        custom_condition_name=data.get("custom_condition_name"),
        additional_context=list(data.get("additional_context") or []),
        current_symptoms=list(data.get("current_symptoms") or []),
        language=language,
    )


def result_to_dict(result: ScanResult) -> Dict[str, Any]:
    out = {
        "product_name": result.product_name,
        "category": result.category.value,
        "icon": result.icon,
        "status": result.status.value,
        "score": result.score,
        "explanation": result.explanation,
        "full_ingredient_list": result.full_ingredient_list,
        "ingredients": [
            {"name": i.name, "risk_level": i.risk_level.value, "description": i.description}
            for i in result.ingredients
        ],
        "alternatives": [{"name": a.name, "reason": a.reason} for a in result.alternatives],
        "failure": result.failure.value if result.failure else None,
    }
    if isinstance(result, FoodResult):
        out["nutri_score"] = result.nutri_score
        out["nutrition_advisor"] = [
            {"name": n.name, "value": n.value, "level": n.level.value}
            for n in result.nutrition_advisor
        ]
        out["dietary_suitability"] = (
            result.dietary_suitability.__dict__.copy() if result.dietary_suitability else None
        )
    return out


def dict_to_result(data: Dict[str, Any]) -> ScanResult:
    """Rebuild a result stored by result_to_dict. Input is trusted (our own output)."""
    category = Category(data.get("category") or Category.OTHER.value)
    cls = RESULT_TYPES[category]
    kwargs = dict(
        product_name=data["product_name"],
        status=ScanStatus(data["status"]),
        score=int(data.get("score") or 0),
        explanation=data.get("explanation") or "",
        icon=data.get("icon") or "📦",
        full_ingredient_list=data.get("full_ingredient_list") or "",
        ingredients=[
            IngredientAnalysis(i["name"], RiskLevel(i["risk_level"]), i.get("description", ""))
            for i in data.get("ingredients") or []
        ],
        alternatives=[Alternative(a["name"], a.get("reason", "")) for a in data.get("alternatives") or []],
        failure=FailureKind(data["failure"]) if data.get("failure") else None,
    )
    if cls is FoodResult:
        suitability = data.get("dietary_suitability")
        kwargs.update(
            nutri_score=data.get("nutri_score"),
            nutrition_advisor=[
                MacroNutrient(n["name"], n["value"], NutrientLevel(n["level"]))
                for n in data.get("nutrition_advisor") or []
            ],
            dietary_suitability=DietarySuitability(**suitability) if suitability else None,
        )
    return cls(**kwargs)


def history_item_to_dict(item: ScanHistoryItem) -> dict:
    return {
        "id": item.id,
        "timestamp": item.timestamp,
        "is_favorite": item.is_favorite,
        "result": result_to_dict(item.result),
    }


def dict_to_history_item(data: dict) -> ScanHistoryItem:
    return ScanHistoryItem(
        id=data["id"],
        timestamp=int(data["timestamp"]),
        result=dict_to_result(data["result"]),
        is_favorite=bool(data.get("is_favorite", False)),
    )

