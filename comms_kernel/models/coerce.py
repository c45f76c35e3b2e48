"""Tolerant conversion of collaborator rows into models."""

import logging
import math
from typing import Iterable, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


def finite_float(value, default: float = 0.0) -> float:
    """float(value), or default when it is missing, malformed, NaN or infinite."""
    try:
        parsed = float(value)
    except (TypeError, ValueError, OverflowError):
        return default
    return parsed if math.isfinite(parsed) else default


def coerce_records(items: Optional[Iterable], model: Type[ModelT]) -> List[ModelT]:
    """
    Accept model instances or plain dicts; rows that cannot be coerced
    even with field defaults are skipped rather than raised.
    """
    records: List[ModelT] = []
    for item in items or []:
        if isinstance(item, model):
            records.append(item)
            continue
        if isinstance(item, BaseModel):
            item = item.model_dump()
        if not isinstance(item, dict):
            logger.debug("Skipping non-mapping %s row: %r", model.__name__, item)
            continue
        try:
            records.append(model.model_validate(item))
        except ValidationError as e:
            logger.debug("Skipping malformed %s row: %s", model.__name__, e)
    return records
