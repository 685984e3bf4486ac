"""
Measure payload validation for the metrics ledger
"""
import math
from decimal import Decimal
from typing import Any, Mapping

from nodescore.domain.errors import InvalidMeasureError


def normalize_measures(measures: Mapping[str, Any]) -> dict[str, float]:
    """
    Validate a measure mapping and convert values to float

    Args:
        measures: {"traffic": 120, "conversion": Decimal("0.031")}

    Returns:
        {"traffic": 120.0, "conversion": 0.031}

    Raises:
        InvalidMeasureError: empty mapping, blank/non-string name,
            non-numeric value (bool and str included), NaN/inf,
            a value too large for a float or a name repeated after stripping

    Example:
        >>> normalize_measures({"x": 5})
        {'x': 5.0}
        >>> normalize_measures({})
        InvalidMeasureError: Measure mapping is empty
    """
    if not isinstance(measures, Mapping):
        raise InvalidMeasureError("Measures must be a mapping of name -> number")
    if not measures:
        raise InvalidMeasureError("Measure mapping is empty")

    normalized: dict[str, float] = {}
    for name, value in measures.items():
        if not isinstance(name, str) or not name.strip():
            raise InvalidMeasureError(f"Invalid measure name: {name!r}")
        # bool is an int subclass but never a measurement
        if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
            raise InvalidMeasureError(f"Measure {name!r} is not numeric: {value!r}")
        try:
            as_float = float(value)
        except (OverflowError, ValueError) as exc:
            raise InvalidMeasureError(f"Measure {name!r} is out of range: {value!r}") from exc
        if not math.isfinite(as_float):
            raise InvalidMeasureError(f"Measure {name!r} is not finite: {value!r}")
        key = name.strip()
        if key in normalized:
            raise InvalidMeasureError(f"Duplicate measure name: {key!r}")
        normalized[key] = as_float

    return normalized
