from __future__ import annotations

from typing import Any, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from hive_mcp.errors import ValidationError

M = TypeVar("M", bound=BaseModel)


def parse_model(model: type[M], payload: Any) -> M:
    """Validate caller input, reporting failures as ``hive_mcp.errors.ValidationError``."""
    if isinstance(payload, model):
        return payload
    try:
        return model.model_validate(payload)
    except PydanticValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(loc) for loc in error['loc']) or model.__name__}: {error['msg']}"
            for error in exc.errors()
        )
        raise ValidationError(f"Invalid {model.__name__}: {problems}") from exc
