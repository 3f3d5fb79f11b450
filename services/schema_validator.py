"""Schema validation and repair for raw language-model output.

The model is asked for a JSON object but its reply is free text: it may be
wrapped in a code fence, carry stray control characters, or be cut off part
way through when the token limit is hit. This module is the single place
where that text is turned into a typed AnalysisResult:

1. Strip control characters.
2. Parse the first JSON object in the text.
3. If parsing fails, strip code fences around the JSON, apply a bounded
   set of textual repairs aimed at truncation (close open strings, arrays
   and objects, drop dangling commas, complete a dangling key with null)
   and parse again.
4. Coerce every expected field independently, substituting a documented
   default whenever a value is missing or has the wrong type.

Only text that cannot be parsed after repair raises UnrepairableOutputError.
"""
import json
import math
import logging
import re
from datetime import date
from enum import Enum
from typing import Any, Dict, List, Optional, Type

from models.analysis_models import (
    ADVANCED_FEATURES,
    DEFAULT_SATISFACTION,
    UNKNOWN,
    AdditionalPainPoint,
    AdoptionApproachEnum,
    AnalysisResult,
    CloudUsage,
    CloudUsageStatusEnum,
    FeatureRequests,
    FeatureUsageEnum,
    FollowUpItem,
    OpportunityCandidate,
    Satisfaction,
)
from services.exceptions import UnrepairableOutputError
from utils.date_utils import resolve_deadline

logger = logging.getLogger(__name__)

# C0/C1 control characters except tab, newline and carriage return
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f\ufeff\u200b]")
_CODE_FENCE = re.compile(r"```(?:json|JSON)?\s*")
_TRAILING_PARTIAL_LITERAL = re.compile(r"([:\[,]\s*)(t|tr|tru|f|fa|fal|fals|n|nu|nul)$")
_TRAILING_PARTIAL_NUMBER = re.compile(r"(\d)[.eE][+-]?$")
_TRAILING_PARTIAL_ESCAPE = re.compile(r"\\u[0-9a-fA-F]{0,3}$")
_NUMBER = re.compile(r"-?\d+(?:\.\d+)?(?:[eE][+-]?\d+)?")
_TRAILING_LONE_MINUS = re.compile(r"([:\[,]\s*)-$")

_CLOSERS = {"{": "}", "[": "]"}

_CLOUD_USAGE_SYNONYMS = {
    "true": "yes",
    "using": "yes",
    "false": "no",
    "none": "no",
    "evaluating": "considering",
    "maybe": "considering",
    "planning": "considering",
}

_ADOPTION_SYNONYMS = {
    "new": "greenfield",
    "from scratch": "greenfield",
    "migration": "retrofit",
    "migrated": "retrofit",
    "existing": "retrofit",
}

_FEATURE_USAGE_SYNONYMS = {
    "true": "yes",
    "using": "yes",
    "used": "yes",
    "false": "no",
    "not used": "no",
}


# --- Text-level repair ---

def strip_control_chars(raw_output: str) -> str:
    return _CONTROL_CHARS.sub("", raw_output or "").strip()


def sanitize_output(raw_output: str) -> str:
    """
    Remove control characters and markdown code fences from model output.

    Only fences around the JSON are removed: an opening fence before the
    first brace, and a closing fence right after the last closing brace or
    bracket. Backticks inside string values are left alone.
    """
    text = strip_control_chars(raw_output)

    brace = text.find("{")
    opening = _CODE_FENCE.search(text)
    if opening and (brace < 0 or opening.start() < brace):
        text = text[opening.end():]

    closing = text.rfind("```")
    if closing > 0 and text[:closing].rstrip()[-1:] in ("}", "]"):
        # A missing closing fence means the output was truncated
        text = text[:closing]
    return text.strip()


def _scan(text: str) -> tuple:
    """Walk the text tracking open brackets and string state.

    Returns:
        (open_stack, in_string, escaped, last_string_is_key_candidate)
    """
    stack: List[str] = []
    in_string = False
    escaped = False
    last_significant = ""
    before_last_string = ""

    for ch in text:
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
                last_significant = '"'
            continue

        if ch.isspace():
            continue
        if ch == '"':
            in_string = True
            before_last_string = last_significant
        elif ch in _CLOSERS:
            stack.append(ch)
        elif ch in ("}", "]"):
            if stack and _CLOSERS[stack[-1]] == ch:
                stack.pop()
        last_significant = ch

    key_candidate = (
        last_significant == '"'
        and bool(stack)
        and stack[-1] == "{"
        and before_last_string in ("{", ",")
    )
    return stack, in_string, escaped, key_candidate


def _remove_commas_before_closers(text: str) -> str:
    """Drop commas that are directly followed by a closing bracket or brace."""
    result = []
    in_string = False
    escaped = False
    length = len(text)

    for i, ch in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            result.append(ch)
            continue

        if ch == '"':
            in_string = True
        elif ch == ",":
            j = i + 1
            while j < length and text[j].isspace():
                j += 1
            if j < length and text[j] in "}]":
                continue
        result.append(ch)

    return "".join(result)


def repair_json(text: str) -> str:
    """
    Apply truncation repairs to JSON text.

    Valid JSON is returned with the same structure. Repairs, in order:
    close an unterminated string, drop a lone minus sign and a dangling
    comma, complete a dangling key or colon with null, replace a cut-off
    literal, close every open array and object, and remove commas placed
    right before a closer.

    Args:
        text: JSON text starting at its opening brace

    Returns:
        Repaired JSON text (not guaranteed to parse)
    """
    repaired = text.rstrip()
    stack, in_string, escaped, _ = _scan(repaired)

    if in_string:
        if escaped:
            repaired = repaired[:-1]
        repaired = _TRAILING_PARTIAL_ESCAPE.sub("", repaired) + '"'

    if stack:
        repaired = _TRAILING_LONE_MINUS.sub(r"\1", repaired).rstrip()
        if repaired.endswith(","):
            repaired = repaired[:-1].rstrip()

        repaired = _TRAILING_PARTIAL_LITERAL.sub(r"\1null", repaired)
        repaired = _TRAILING_PARTIAL_NUMBER.sub(r"\1", repaired)

        if repaired.endswith(":"):
            repaired += " null"
        else:
            _, _, _, key_candidate = _scan(repaired)
            if key_candidate:
                repaired += ": null"

        stack, _, _, _ = _scan(repaired)
        repaired += "".join(_CLOSERS[opener] for opener in reversed(stack))

    return _remove_commas_before_closers(repaired)


def parse_model_output(raw_output: str) -> Dict[str, Any]:
    """
    Parse the JSON object contained in raw model output, repairing if needed.

    Args:
        raw_output: Free text returned by the language model

    Returns:
        The decoded JSON object

    Raises:
        UnrepairableOutputError: If no JSON object can be recovered
    """
    decoder = json.JSONDecoder(strict=False)

    # Complete JSON is decoded as-is, whatever follows it
    text = strip_control_chars(raw_output)
    start = text.find("{")
    if start < 0:
        raise UnrepairableOutputError("Model output does not contain a JSON object")

    try:
        data, _ = decoder.raw_decode(text[start:])
    except json.JSONDecodeError as first_error:
        text = sanitize_output(raw_output)
        candidate = text[max(text.find("{"), 0):]
        logger.warning(
            f"Model output is not valid JSON, attempting repair: "
            f"error={first_error.msg}, position={first_error.pos}, length={len(candidate)}"
        )
        try:
            data, _ = decoder.raw_decode(repair_json(candidate))
        except json.JSONDecodeError as e:
            logger.error(f"Model output could not be repaired: error={e.msg}, position={e.pos}")
            raise UnrepairableOutputError(
                f"Model output could not be parsed after repair: {e.msg}"
            ) from e
        logger.info("Model output repaired successfully")

    if not isinstance(data, dict):
        raise UnrepairableOutputError("Model output is not a JSON object")
    return data


# --- Field coercion ---

def _get(data: Dict[str, Any], camel_key: str, snake_key: Optional[str] = None) -> Any:
    """Look a field up by its camelCase name, then its snake_case name."""
    if camel_key in data:
        return data[camel_key]
    if snake_key is not None:
        return data.get(snake_key)
    return None


def _text(value: Any, default: Optional[str] = UNKNOWN) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    if _number(value) is not None and not isinstance(value, str):
        return str(value)
    return default


def _text_list(value: Any) -> List[str]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        return []
    items = []
    for item in value:
        text = _text(item, default=None)
        if text is not None:
            items.append(text)
    return items


def _number(value: Any) -> Optional[float]:
    """A finite number read from a JSON value; NaN and Infinity are unreadable."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            number = float(value)
        except OverflowError:
            return None
    elif isinstance(value, str):
        match = _NUMBER.search(value)
        if not match:
            return None
        number = float(match.group())
    else:
        return None
    return number if math.isfinite(number) else None


def _score(value: Any, default: float) -> float:
    """A 0-10 score; unstated or unreadable scores take the default."""
    number = _number(value)
    if number is None:
        return default
    return max(0.0, min(10.0, number))


def _confidence(value: Any) -> float:
    """A confidence in [0, 1]; percentages are scaled down."""
    number = _number(value)
    if number is None:
        return 0.0
    if isinstance(value, str) and value.strip().endswith("%"):
        number /= 100
    elif 1 < number <= 100:
        number /= 100
    return max(0.0, min(1.0, number))


def _enum(value: Any, enum_cls: Type[Enum], synonyms: Optional[Dict[str, str]] = None) -> Enum:
    if isinstance(value, bool):
        value = "yes" if value else "no"
    if not isinstance(value, str):
        return enum_cls("unknown")
    key = " ".join(value.strip().lower().replace("_", " ").replace("-", " ").split())
    key = (synonyms or {}).get(key, key)
    try:
        return enum_cls(key)
    except ValueError:
        return enum_cls("unknown")


def _cloud_usage(value: Any) -> CloudUsage:
    if isinstance(value, dict):
        status = _enum(value.get("status", value.get("usage")), CloudUsageStatusEnum, _CLOUD_USAGE_SYNONYMS)
        return CloudUsage(status=status, reason=_text(value.get("reason"), default=None))
    return CloudUsage(status=_enum(value, CloudUsageStatusEnum, _CLOUD_USAGE_SYNONYMS))


def _satisfaction(value: Any) -> Satisfaction:
    if isinstance(value, dict):
        return Satisfaction(
            nx=_score(value.get("nx"), DEFAULT_SATISFACTION),
            nx_cloud=_score(_get(value, "nxCloud", "nx_cloud"), DEFAULT_SATISFACTION),
        )
    return Satisfaction(nx=_score(value, DEFAULT_SATISFACTION))


def _feature_requests(value: Any) -> FeatureRequests:
    if isinstance(value, dict):
        return FeatureRequests(
            nx=_text_list(value.get("nx")),
            nx_cloud=_text_list(_get(value, "nxCloud", "nx_cloud")),
        )
    return FeatureRequests(nx=_text_list(value))


def _advanced_feature_usage(value: Any) -> Dict[str, FeatureUsageEnum]:
    usage = {name: FeatureUsageEnum.unknown for name in ADVANCED_FEATURES}
    if isinstance(value, dict):
        for name, state in value.items():
            if isinstance(name, str) and name.strip():
                usage[name.strip().lower()] = _enum(state, FeatureUsageEnum, _FEATURE_USAGE_SYNONYMS)
    return usage


def _follow_ups(value: Any, submitted_on: date) -> List[FollowUpItem]:
    if not isinstance(value, list):
        return []
    follow_ups = []
    for item in value:
        if isinstance(item, str):
            item = {"description": item}
        if not isinstance(item, dict):
            continue
        description = _text(item.get("description"), default=None)
        if description is None:
            continue
        assignee = _text(_get(item, "assignee", "assignedTo"), default=None)
        if assignee is not None and assignee.lower() == UNKNOWN:
            assignee = None
        follow_ups.append(FollowUpItem(
            description=description,
            deadline=resolve_deadline(item.get("deadline"), submitted_on),
            assignee=assignee,
        ))
    return follow_ups


def _additional_pain_points(value: Any) -> List[AdditionalPainPoint]:
    if not isinstance(value, list):
        return []
    pain_points = []
    for item in value:
        if isinstance(item, str):
            item = {"description": item}
        if not isinstance(item, dict):
            continue
        description = _text(item.get("description"), default=None)
        if description is None:
            continue
        pain_points.append(AdditionalPainPoint(
            description=description,
            urgency_score=_score(_get(item, "urgencyScore", "urgency_score"), 5),
            category=_text(item.get("category")),
        ))
    return pain_points


def _opportunities(value: Any, pain_point_count: int) -> List[OpportunityCandidate]:
    if not isinstance(value, list):
        return []
    opportunities = []
    for item in value:
        if not isinstance(item, dict):
            continue
        feature = _text(item.get("feature", item.get("nxFeature")), default=None)
        if feature is None:
            continue
        index = _get(item, "painPointIndex", "pain_point_index")
        if isinstance(index, bool) or not isinstance(index, int) or not 0 <= index < pain_point_count:
            index = 0
        opportunities.append(OpportunityCandidate(
            feature=feature,
            confidence_score=_confidence(_get(item, "confidenceScore", "confidence_score")),
            suggested_approach=_text(_get(item, "suggestedApproach", "suggested_approach")),
            pain_point_index=index,
        ))
    return opportunities


def coerce_analysis(data: Dict[str, Any], submitted_on: date) -> AnalysisResult:
    """
    Coerce a decoded JSON object into an AnalysisResult.

    Each field is checked on its own; a missing or mistyped value is replaced
    by its default ("unknown" for text and enums, [] for lists, 5 for an
    unstated satisfaction score) instead of failing the whole record.

    Args:
        data: Decoded model output
        submitted_on: Meeting date, used to resolve relative deadlines

    Returns:
        Fully populated AnalysisResult
    """
    additional_pain_points = _additional_pain_points(_get(data, "additionalPainPoints", "additional_pain_points"))

    return AnalysisResult(
        main_pain=_text(_get(data, "mainPain", "main_pain")),
        why_now=_text(_get(data, "whyNow", "why_now")),
        call_objective=_text(_get(data, "callObjective", "call_objective")),
        company_domain=_text(_get(data, "companyDomain", "company_domain")),
        ci_provider=_text(_get(data, "ciProvider", "ci_provider")),
        problematic_tasks=_text_list(_get(data, "problematicTasks", "problematic_tasks")),
        technologies_used=_text_list(_get(data, "technologiesUsed", "technologies_used")),
        nx_version=_text(_get(data, "nxVersion", "nx_version")),
        cloud_usage=_cloud_usage(_get(data, "cloudUsage", "cloud_usage")),
        years_using=_text(_get(data, "yearsUsing", "years_using")),
        workspace_size=_text(_get(data, "workspaceSize", "workspace_size")),
        adoption_approach=_enum(
            _get(data, "adoptionApproach", "adoption_approach"), AdoptionApproachEnum, _ADOPTION_SYNONYMS
        ),
        satisfaction=_satisfaction(data.get("satisfaction")),
        feature_requests=_feature_requests(_get(data, "featureRequests", "feature_requests")),
        current_benefits=_text_list(_get(data, "currentBenefits", "current_benefits")),
        favorite_features=_text_list(_get(data, "favoriteFeatures", "favorite_features")),
        advanced_feature_usage=_advanced_feature_usage(_get(data, "advancedFeatureUsage", "advanced_feature_usage")),
        participants=_text_list(data.get("participants")),
        follow_ups=_follow_ups(_get(data, "followUps", "follow_ups"), submitted_on),
        additional_pain_points=additional_pain_points,
        opportunities=_opportunities(data.get("opportunities"), len(additional_pain_points) + 1),
        executive_summary=_text(_get(data, "executiveSummary", "executive_summary")),
    )


class SchemaValidator:
    """Turns raw model output into a validated AnalysisResult."""

    def validate(self, raw_output: str, submitted_on: Optional[date] = None) -> AnalysisResult:
        """
        Parse, repair and coerce raw model output.

        Args:
            raw_output: Text returned by the language model
            submitted_on: Meeting date for deadline resolution (default: today)

        Returns:
            AnalysisResult with every field present

        Raises:
            UnrepairableOutputError: If the output cannot be parsed even after repair
        """
        data = parse_model_output(raw_output)
        analysis = coerce_analysis(data, submitted_on or date.today())

        logger.info(
            f"Model output validated: fields_received={len(data)}, "
            f"additional_pain_points={len(analysis.additional_pain_points)}, "
            f"follow_ups={len(analysis.follow_ups)}, opportunities={len(analysis.opportunities)}"
        )
        return analysis
