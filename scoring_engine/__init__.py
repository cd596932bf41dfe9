"""Pure scoring engine: criterion normalization, aggregation and verdicts."""
from .errors import (
    ConfigIntegrityError,
    ConflictError,
    EvaluationError,
    PreconditionError,
    StateError,
    ValidationError,
)
from .criteria import CRITERIA_TYPES, default_value, parse_config, parse_value
from .models import (
    Criterion,
    CriterionResult,
    ScoreInput,
    ScoringTemplate,
    SessionScoreResult,
    TemplateSettings,
)
from .normalizer import (
    display_value,
    is_auto_fail_triggered,
    normalize,
    not_applicable,
    score_input,
    validate_score_value,
)
from .auto_fail import AutoFailVerdict, evaluate_auto_fail
from .verdict import decide
from .aggregator import aggregate, scoreable_results

__all__ = [
    "AutoFailVerdict",
    "CRITERIA_TYPES",
    "ConfigIntegrityError",
    "ConflictError",
    "Criterion",
    "CriterionResult",
    "EvaluationError",
    "PreconditionError",
    "ScoreInput",
    "ScoringTemplate",
    "SessionScoreResult",
    "StateError",
    "TemplateSettings",
    "ValidationError",
    "aggregate",
    "decide",
    "default_value",
    "display_value",
    "evaluate_auto_fail",
    "is_auto_fail_triggered",
    "normalize",
    "not_applicable",
    "parse_config",
    "parse_value",
    "score_input",
    "scoreable_results",
    "validate_score_value",
]
