from __future__ import annotations

import json
import logging
from typing import Any, Type, TypeVar

from json_repair import repair_json
from pydantic import BaseModel
from pydantic import ValidationError as SchemaError

from dailies.errors import ValidationError

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


def extract_json_block(text: str) -> str:
    """Return the JSON object embedded in a model response.

    Strips Markdown code fences and any prose around the outermost braces.
    """
    candidate = text.strip()
    if candidate.startswith("```"):
        lines = candidate.splitlines()
        closing = len(lines) - 1 if len(lines) > 1 and lines[-1].startswith("```") else len(lines)
        candidate = "\n".join(lines[1:closing])
    start = candidate.find("{")
    end = candidate.rfind("}")
    if start != -1 and end >= start:
        return candidate[start : end + 1]
    return candidate


def load_structured(raw: str) -> Any:
    """Parse a JSON payload from the model, repairing it when it is malformed."""
    cleaned = extract_json_block(raw)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as exc:
        logger.warning("Model returned malformed JSON, attempting repair: %s", exc)
        try:
            return json.loads(repair_json(cleaned))
        except ValueError as repair_exc:
            logger.error("JSON repair failed: %s", repair_exc)
            raise ValidationError(f"Model response is not valid JSON: {exc}") from repair_exc


def validate_payload(model: Type[ModelT], payload: Any, *, label: str) -> ModelT:
    try:
        return model.model_validate(payload)
    except SchemaError as exc:
        logger.error("Invalid %s payload: %s", label, exc)
        raise ValidationError(f"Invalid {label}: {exc}") from exc
