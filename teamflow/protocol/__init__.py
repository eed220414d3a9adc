from .codec import (
    parse_blueprint,
    parse_controller_decision,
    parse_digest,
    parse_first,
    parse_plan,
    parse_report,
    parse_review,
    validate_plan,
    validate_report,
)

__all__ = [
    "parse_blueprint",
    "parse_controller_decision",
    "parse_digest",
    "parse_first",
    "parse_plan",
    "parse_report",
    "parse_review",
    "validate_plan",
    "validate_report",
]
