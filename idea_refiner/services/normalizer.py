"""Turn an untrusted model completion into a RefinementPlan.

Stages: extract a JSON value from the text, check the eight required fields,
then repair list fields so every list in the output is non-empty. A failure in
the first stage raises ExtractionFailure, in the second StructuralFailure.
Nothing here calls the model again.
"""
import json
import re
from typing import Any, Dict, List, Optional, Tuple

from idea_refiner.schemas.refine import LIST_FIELDS, PLACEHOLDER, REQUIRED_FIELDS, SCALAR_FIELDS, RefinementPlan
from idea_refiner.utils.exceptions import ExtractionFailure, StructuralFailure
from idea_refiner.utils.logger import get_logger
from idea_refiner.utils.metrics import normalization_failures, plan_repairs

logger = get_logger("normalizer")

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```")
_BRACES_RE = re.compile(r"\{[\s\S]*\}")

_NOTHING = object()


def _try_json(candidate: str) -> Any:
    try:
        return json.loads(candidate)
    except ValueError:
        return _NOTHING


def extract_json(text: Any) -> Any:
    """Recover the JSON value a completion carries.

    Tried in order, first parse wins: the first fenced code block, the span
    from the first ``{`` to the last ``}``, the whole trimmed text.
    """
    if not isinstance(text, str) or not text.strip():
        raise ExtractionFailure(text, "empty completion")

    fenced = _FENCE_RE.search(text)
    if fenced:
        value = _try_json(fenced.group(1).strip())
        if value is not _NOTHING:
            return value

    braces = _BRACES_RE.search(text)
    if braces:
        value = _try_json(braces.group(0))
        if value is not _NOTHING:
            return value

    value = _try_json(text.strip())
    if value is not _NOTHING:
        return value
    raise ExtractionFailure(text)


def _is_missing(value: Any) -> bool:
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, list):
        # an empty list is repaired, not rejected
        return False
    return not value


def check_fields(data: Any) -> Tuple[List[str], List[str]]:
    """Return (missing, invalid) field names for an extracted payload."""
    if not isinstance(data, dict):
        return list(REQUIRED_FIELDS), []
    missing = [f for f in REQUIRED_FIELDS if _is_missing(data.get(f))]
    invalid = [f for f in SCALAR_FIELDS if f not in missing and not isinstance(data[f], str)]
    return missing, invalid


def repair_list(value: Any) -> Optional[List[str]]:
    """String items pass through untouched; None means the placeholder is needed.

    Numbers are rendered as strings and other non-string items are dropped,
    since the plan only carries lists of strings.
    """
    if not isinstance(value, list) or not value:
        return None
    items = [
        x if isinstance(x, str) else str(x)
        for x in value
        if isinstance(x, (str, int, float)) and not isinstance(x, bool)
    ]
    return items or None


def validate_and_repair(data: Any) -> RefinementPlan:
    missing, invalid = check_fields(data)
    if missing or invalid:
        raise StructuralFailure(missing, invalid)

    fields: Dict[str, Any] = {f: data[f] for f in SCALAR_FIELDS}
    for f in LIST_FIELDS:
        items = repair_list(data[f])
        if items is None:
            plan_repairs.labels(field=f).inc()
            items = [PLACEHOLDER]
        fields[f] = items
    return RefinementPlan(**fields)


def normalize(text: Any, request_id: Optional[str] = None) -> RefinementPlan:
    try:
        data = extract_json(text)
        return validate_and_repair(data)
    except ExtractionFailure as e:
        normalization_failures.labels(stage=e.stage).inc()
        logger.warning(
            "no JSON payload in completion",
            extra={"extra": {"event": "extract_failed", "raw_snippet": e.raw_snippet, "request_id": request_id}},
        )
        raise
    except StructuralFailure as e:
        normalization_failures.labels(stage=e.stage).inc()
        logger.warning(
            "completion failed schema check",
            extra={
                "extra": {
                    "event": "structural_failed",
                    "missing": e.missing,
                    "invalid": e.invalid,
                    "request_id": request_id,
                }
            },
        )
        raise
