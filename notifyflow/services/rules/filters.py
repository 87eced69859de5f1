"""Optional per-rule conditions evaluated against the event context."""

from typing import Any

from notifyflow.common.logging import logger


def value_at_path(payload: Any, path: str) -> Any:
    """Resolve a dot-separated path (`customer.email`) or return `None`."""

    current = payload
    for part in path.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(part)
    return current


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def evaluate_condition(payload: dict[str, Any], condition: dict[str, Any]) -> bool:
    actual = value_at_path(payload, str(condition.get("path", "")))
    op = condition.get("op")
    expected = condition.get("value")

    if op == "eq":
        return actual == expected
    if op == "neq":
        return actual != expected
    if op == "exists":
        present = actual is not None
        return present if expected else not present
    if op == "gte":
        return _is_number(actual) and _is_number(expected) and actual >= expected
    if op == "lte":
        return _is_number(actual) and _is_number(expected) and actual <= expected
    if op == "contains":
        if isinstance(actual, str) and isinstance(expected, str):
            return expected in actual
        if isinstance(actual, list):
            return expected in actual
        return False
    logger.warning("unknown filter operator op=%s path=%s", op, condition.get("path"))
    return False


def matches_filters(payload: dict[str, Any], filters: list[dict[str, Any]] | None) -> bool:
    """AND all conditions; no filters always matches."""

    if not filters:
        return True
    return all(evaluate_condition(payload, condition) for condition in filters)
