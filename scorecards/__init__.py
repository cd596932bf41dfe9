from __future__ import annotations  # Scorecard package exports

from .pdf import ScorecardPDF, render_scorecard_pdf

__all__ = ["ScorecardPDF", "render_scorecard_pdf"]
