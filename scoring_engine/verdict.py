from __future__ import annotations  # Final pass/fail call for a scored session

from .models import PassStatus


def decide(percentage: float, pass_threshold: float, has_auto_fail: bool, scoreable: bool) -> PassStatus:
    """Return ``pending`` with nothing to judge, else fail on auto-fail or below threshold.

    The threshold is inclusive: a percentage equal to it passes.
    """

    if not scoreable:
        return "pending"
    if has_auto_fail:
        return "fail"
    return "pass" if percentage >= pass_threshold else "fail"


__all__ = ["decide"]
