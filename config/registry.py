"""In-memory registry of custom scoring formulas."""
from typing import Any, Callable, Dict, List

Formula = Callable[[List[Any]], float]

_REGISTRY: Dict[str, Formula] = {}


def bind_formula(name: str, fn: Formula) -> None:
    """Bind a formula to ``name``.

    The callable receives the non-N/A criterion results of a session and
    returns a percentage; the aggregator clamps it into 0-100.
    """
    _REGISTRY[name] = fn


def get_formula(name: str) -> Formula:
    """Retrieve a formula from the registry.

    Raises:
        KeyError: If no formula has been bound for ``name``.
    """

    if name not in _REGISTRY:
        raise KeyError(f"Formula not bound in registry: {name}")
    return _REGISTRY[name]


def unbind_formula(name: str) -> None:
    """Remove ``name`` from the registry if present."""
    _REGISTRY.pop(name, None)
