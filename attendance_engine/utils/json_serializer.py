"""
Helpers for storing Python values in JSON columns (audit meta, sync job config/result, payroll breakdowns)
"""
from dataclasses import asdict, is_dataclass
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel


def sanitize_for_json(obj: Any) -> Any:
    """
    Recursively convert a value into something the JSON column type accepts.

    Dates become ISO strings, enums their value, dataclasses and pydantic
    models their dict form. Decimals are rendered as strings so money and
    hours keep their exact value.
    """
    if obj is None or isinstance(obj, (str, bool, int, float)):
        return obj
    if isinstance(obj, (date, datetime, time)):
        return obj.isoformat()
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, BaseModel):
        return sanitize_for_json(obj.model_dump())
    if is_dataclass(obj) and not isinstance(obj, type):
        return sanitize_for_json(asdict(obj))
    if isinstance(obj, dict):
        return {str(k): sanitize_for_json(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple, set)):
        return [sanitize_for_json(item) for item in obj]
    return str(obj)
