# app/analysis_client.py
from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union
import os, json, re, logging

import openai
from openai import OpenAI
from dotenv import load_dotenv

from app.data_model import AppLanguage, FailureKind, OtherResult, ScanResult, ScanStatus
from app.profile_context import ProfileContext, render_system_instruction
from app.result_normalizer import normalize

load_dotenv()

logger = logging.getLogger("uvicorn.error")

DEFAULT_MODEL = "gpt-4o-mini"
MAX_OUTPUT_TOKENS = 1024


# -----------------------------
# Error taxonomy
# -----------------------------
class AnalysisError(Exception):
    failure_kind = FailureKind.ANALYSIS_FAILED


class MissingCredential(AnalysisError):
    failure_kind = FailureKind.MISSING_CREDENTIAL


class AnalysisFailed(AnalysisError):
    failure_kind = FailureKind.ANALYSIS_FAILED


class AccessOrQuotaError(AnalysisError):
    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.status_code = status_code
        self.failure_kind = FailureKind.RATE_LIMITED if status_code == 429 else FailureKind.ACCESS_DENIED


# -----------------------------
# Parse step
# -----------------------------
@dataclass
class ValidResult:
    result: ScanResult


@dataclass
class ParseFailure:
    reason: str


ParseOutcome = Union[ValidResult, ParseFailure]


def _strip_code_fence(text: str) -> str:
    t = text.strip()
    if t.startswith("```"):
        t = re.sub(r"^```(?:json)?\s*", "", t, flags=re.IGNORECASE)
        t = re.sub(r"\s*```$", "", t)
    return t


def parse_analysis_response(text: Optional[str]) -> ParseOutcome:
    if not text or not text.strip():
        return ParseFailure("empty response")
    try:
        data = json.loads(_strip_code_fence(text))
    except json.JSONDecodeError as e:
        return ParseFailure(f"invalid JSON: {e.msg} at position {e.pos}")
    if not isinstance(data, dict):
        return ParseFailure(f"expected a JSON object, got {type(data).__name__}")
    return ValidResult(normalize(data))


# -----------------------------
# Response schema
# -----------------------------
def _obj(properties: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "type": "object",
        "properties": properties,
        "required": list(properties),
        "additionalProperties": False,
    }


_STRING = {"type": "string"}

SCAN_RESULT_SCHEMA = _obj({
    "productName": _STRING,
    "category": {"type": "string", "enum": ["Food", "Cosmetic", "Other"]},
    "icon": _STRING,
    "status": {"type": "string", "enum": ["SAFE", "CAUTION", "AVOID"]},
    "score": {"type": "number"},
    "nutriScore": {"type": "string", "enum": ["A", "B", "C", "D", "E", "N/A"]},
    "explanation": _STRING,
    "fullIngredientList": _STRING,
    "ingredients": {
        "type": "array",
        "items": _obj({
            "name": _STRING,
            "riskLevel": {"type": "string", "enum": ["Safe", "Moderate", "High Risk"]},
            "description": _STRING,
        }),
    },
    "nutritionAdvisor": {
        "type": "array",
        "items": _obj({
            "name": _STRING,
            "value": _STRING,
            "level": {"type": "string", "enum": ["Low", "Medium", "High"]},
        }),
    },
    "dietarySuitability": {
        "anyOf": [
            _obj({
                "vegan": {"type": "boolean"},
                "vegetarian": {"type": "boolean"},
                "glutenFree": {"type": "boolean"},
                "lactoseFree": {"type": "boolean"},
            }),
            {"type": "null"},
        ]
    },
    "alternatives": {
        "type": "array",
        "items": _obj({"name": _STRING, "reason": _STRING}),
    },
})


# -----------------------------
# Fallback results
# -----------------------------
_CONFIG_ERROR_TEXT = {
    AppLanguage.ID: (
        "Error Konfigurasi",
        "Kunci API tidak ditemukan. Pastikan Anda telah mengonfigurasi OPENAI_API_KEY di server.",
    ),
}
_CONFIG_ERROR_DEFAULT = (
    "Configuration Error",
    "API key missing. Ensure OPENAI_API_KEY is configured on the server.",
)

_FAILURE_MESSAGES = {
    FailureKind.ANALYSIS_FAILED: "Failed to contact AI server. Please try scanning again.",
    FailureKind.ACCESS_DENIED: "Access denied (403). Check that the AI account billing and project access are active.",
    FailureKind.RATE_LIMITED: "Too many requests (429). Please wait a moment and try again.",
}


def fallback_result(kind: FailureKind, language: AppLanguage = AppLanguage.EN) -> ScanResult:
    """A normal-looking result card carrying the failure, so rendering has one path."""
    if kind is FailureKind.MISSING_CREDENTIAL:
        title, message = _CONFIG_ERROR_TEXT.get(language, _CONFIG_ERROR_DEFAULT)
    else:
        title, message = "Analysis Error", _FAILURE_MESSAGES[kind]
    return OtherResult(
        product_name=title,
        icon="⚠️",
        status=ScanStatus.CAUTION,
        score=0,
        explanation=message,
        full_ingredient_list="",
        failure=kind,
    )


# -----------------------------
# Client
# -----------------------------
def _has_credential(api_key: Optional[str]) -> bool:
    return bool(api_key) and api_key.strip() not in ("", "undefined")


class AnalysisClient:
    """Single-shot multimodal analysis. Never retried; the caller decides."""

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None,
                 timeout: Optional[float] = None, client: Optional[OpenAI] = None):
        self.api_key = api_key if api_key is not None else os.getenv("OPENAI_API_KEY")
        self.model = model or os.getenv("ANALYSIS_MODEL", DEFAULT_MODEL)
        self.timeout = timeout or float(os.getenv("ANALYSIS_TIMEOUT", "60"))
        self._client = client

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            self._client = OpenAI(api_key=self.api_key, timeout=self.timeout, max_retries=0)
        return self._client

    def _build_messages(self, image_base64: str, ctx: ProfileContext) -> List[Dict[str, Any]]:
        return [
            {"role": "system", "content": render_system_instruction(ctx)},
            {
                "role": "user",
                "content": [
                    {"type": "image_url", "image_url": {"url": f"data:image/jpeg;base64,{image_base64}"}},
                    {
                        "type": "text",
                        "text": f"Analyze this image and provide results in {ctx.language_name} "
                                "in JSON format according to the schema.",
                    },
                ],
            },
        ]

    def request(self, image_base64: str, ctx: ProfileContext) -> ScanResult:
        """Raises AnalysisError subclasses; see analyze() for the non-raising form."""
        if not _has_credential(self.api_key):
            raise MissingCredential("no API key configured")

        try:
            resp = self.client.chat.completions.create(
                model=self.model,
                messages=self._build_messages(image_base64, ctx),
                max_tokens=MAX_OUTPUT_TOKENS,
                temperature=0.2,
                response_format={
                    "type": "json_schema",
                    "json_schema": {"name": "scan_result", "strict": True, "schema": SCAN_RESULT_SCHEMA},
                },
            )
        except (openai.PermissionDeniedError, openai.RateLimitError) as e:
            raise AccessOrQuotaError(str(e), e.status_code) from e
        except openai.APIStatusError as e:
            if e.status_code in (403, 429):
                raise AccessOrQuotaError(str(e), e.status_code) from e
            raise AnalysisFailed(f"analysis endpoint returned {e.status_code}") from e
        except openai.APIError as e:
            raise AnalysisFailed(f"analysis request failed: {e}") from e

        content = resp.choices[0].message.content if resp.choices else None
        outcome = parse_analysis_response(content)
        if isinstance(outcome, ParseFailure):
            raise AnalysisFailed(outcome.reason)
        return outcome.result

    def analyze(self, image_base64: str, ctx: ProfileContext) -> ScanResult:
        try:
            result = self.request(image_base64, ctx)
        except MissingCredential:
            logger.warning("Analysis skipped: OPENAI_API_KEY is not configured")
            return fallback_result(FailureKind.MISSING_CREDENTIAL, ctx.language)
        except AnalysisError as e:
            logger.error(f"Analysis failed ({e.failure_kind.value}): {e}")
            return fallback_result(e.failure_kind, ctx.language)
        except Exception as e:
            logger.error(f"Analysis failed unexpectedly: {e}", exc_info=True)
            return fallback_result(FailureKind.ANALYSIS_FAILED, ctx.language)

        logger.info(f"Analysis complete: {result.product_name} [{result.category.value}] "
                    f"status={result.status.value} score={result.score}")
        return result
