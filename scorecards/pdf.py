from __future__ import annotations  # Styled PDF scorecard for a scored session

import os
from datetime import datetime
from typing import Any, Dict, List, Sequence, Tuple

from fpdf import FPDF
from fpdf.enums import XPos, YPos

from config.settings import settings
from scoring_engine.errors import StateError
from scoring_engine.normalizer import display_value
from session_lifecycle.models import ScoreRecord, Session

ACCENT = (45, 115, 245)  # Palette accent
PASS_COLOR = (30, 140, 80)  # Verdict colors
FAIL_COLOR = (200, 45, 45)
TEXT = (34, 34, 34)  # Primary text color
MUTED = (100, 100, 100)  # Secondary text color
RULE = (230, 230, 230)  # Divider color
SOFT_ACCENT_BG = (243, 248, 255)  # Highlight background

SCORED_STATUSES = ("completed", "reviewed", "disputed")


def _parse_datetime(value: str | None) -> datetime | None:  # Parse ISO timestamp, None when absent or malformed
    if not value:
        return None
    normalized = value[:-1] + "+00:00" if value.endswith("Z") else value
    try:
        return datetime.fromisoformat(normalized)
    except ValueError:
        return None


def _format_datetime(value: str | None) -> str:  # Format timestamp for display
    parsed = _parse_datetime(value)
    if not parsed:
        return "-"
    return parsed.strftime("%d %b %Y, %I:%M %p").lstrip("0").replace(" 0", " ")


def _effective_width(pdf: FPDF) -> float:  # Compute effective page width
    return float(pdf.w) - float(pdf.l_margin) - float(pdf.r_margin)


def _fmt_number(value: float | None, suffix: str = "") -> str:
    if value is None:
        return "-"
    return f"{value:.2f}".rstrip("0").rstrip(".") + suffix


class ScorecardPDF(FPDF):  # PDF with accent banner header and paginated footer
    def __init__(self, *args, accent: Tuple[int, int, int] = ACCENT, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.accent = accent
        self.header_title = "Call Scorecard"
        self.font_regular = "Helvetica"
        self.font_bold = "Helvetica"
        self.supports_unicode = False

    def use_unicode_fonts(self, regular_path: str, bold_path: str) -> None:  # Switch to TTF fonts when installed
        if not (os.path.exists(regular_path) and os.path.exists(bold_path)):
            return
        self.add_font("DejaVu", "", regular_path)
        self.add_font("DejaVu", "B", bold_path)
        self.font_regular = "DejaVu"
        self.font_bold = "DejaVu"
        self.supports_unicode = True

    def prepare_text(self, text: Any) -> str:  # Core fonts only cover latin-1
        value = "" if text is None else str(text)
        if self.supports_unicode:
            return value
        return value.replace("•", "-").encode("latin-1", "replace").decode("latin-1")

    def header(self) -> None:  # Banner on the first page, ruled title afterwards
        usable = _effective_width(self)
        title = self.prepare_text(self.header_title)
        if self.page_no() == 1:
            self.set_fill_color(*self.accent)
            self.rect(0, 0, self.w, 20, style="F")
            self.set_text_color(255, 255, 255)
            self.set_font(self.font_bold, "B", 16)
            self.set_xy(self.l_margin, 6)
            self.cell(usable, 8, title, new_x=XPos.LMARGIN, new_y=YPos.NEXT)
            self.set_text_color(*TEXT)
            self.ln(6)
        else:
            self.set_text_color(80, 80, 80)
            self.set_xy(self.l_margin, 8)
            self.set_font(self.font_bold, "B", 12)
            self.cell(usable, 6, title, new_x=XPos.LMARGIN, new_y=YPos.NEXT)
            mark = self.get_y()
            self.set_draw_color(*self.accent)
            self.set_line_width(0.4)
            self.line(self.l_margin, mark + 1, self.w - self.r_margin, mark + 1)
            self.set_text_color(*TEXT)
            self.ln(4)

    def footer(self) -> None:  # Render footer with pagination
        self.set_y(-12)
        self.set_draw_color(*RULE)
        self.set_line_width(0.2)
        self.line(self.l_margin, self.get_y(), self.w - self.r_margin, self.get_y())
        self.set_text_color(120, 120, 120)
        self.set_font(self.font_regular, "", 9)
        self.cell(0, 10, f"Page {self.page_no()}/{{nb}}", align="R")


def _section_title(pdf: ScorecardPDF, title: str) -> None:  # Render styled section title
    pdf.set_text_color(*TEXT)
    pdf.set_x(pdf.l_margin)
    pdf.set_font(pdf.font_bold, "B", 13)
    pdf.cell(0, 9, pdf.prepare_text(title), new_x=XPos.LMARGIN, new_y=YPos.NEXT)
    pdf.set_draw_color(*RULE)
    pdf.set_line_width(0.2)
    y = pdf.get_y()
    pdf.line(pdf.l_margin, y, pdf.l_margin + _effective_width(pdf), y)
    pdf.ln(2)


def _meta_block(pdf: ScorecardPDF, rows: List[Tuple[str, str]]) -> None:  # Draw two-column label/value pairs
    col = _effective_width(pdf) / 2.0
    line = 6
    for idx in range(0, len(rows), 2):
        left = rows[idx]
        right = rows[idx + 1] if idx + 1 < len(rows) else ("", "")
        pdf.set_x(pdf.l_margin)
        pdf.set_text_color(*MUTED)
        pdf.set_font(pdf.font_regular, "", 10)
        pdf.cell(col, line, pdf.prepare_text(left[0]), new_x=XPos.RIGHT, new_y=YPos.TOP)
        pdf.cell(col, line, pdf.prepare_text(right[0]), new_x=XPos.LMARGIN, new_y=YPos.NEXT)
        pdf.set_x(pdf.l_margin)
        pdf.set_text_color(*TEXT)
        pdf.set_font(pdf.font_bold, "B", 11)
        pdf.cell(col, line, pdf.prepare_text(left[1]), new_x=XPos.RIGHT, new_y=YPos.TOP)
        pdf.cell(col, line, pdf.prepare_text(right[1]), new_x=XPos.LMARGIN, new_y=YPos.NEXT)
    pdf.ln(2)


def _render_verdict(pdf: ScorecardPDF, session: Session) -> None:  # Highlighted percentage and pass/fail badge
    width = _effective_width(pdf)
    top = pdf.get_y()
    pdf.set_fill_color(*SOFT_ACCENT_BG)
    pdf.rect(pdf.l_margin, top, width, 18, style="F")
    pdf.set_xy(pdf.l_margin + 6, top + 5)
    pdf.set_text_color(*MUTED)
    pdf.set_font(pdf.font_regular, "", 10)
    pdf.cell(width / 2, 8, "Overall score")
    pdf.set_text_color(*ACCENT)
    pdf.set_font(pdf.font_bold, "B", 14)
    pdf.cell(width / 4, 8, _fmt_number(session.percentage_score, "%"), align="R")
    color = PASS_COLOR if session.pass_status == "pass" else FAIL_COLOR if session.pass_status == "fail" else MUTED
    pdf.set_text_color(*color)
    pdf.cell(width / 4 - 12, 8, session.pass_status.upper(), align="R")
    pdf.set_y(top + 20)
    pdf.set_text_color(*TEXT)
    if session.has_auto_fail:
        names = {criterion.id: criterion.name for criterion in session.template_snapshot.criteria}
        failed = ", ".join(names.get(cid, cid) for cid in session.auto_fail_criteria_ids)
        pdf.set_x(pdf.l_margin)
        pdf.set_text_color(*FAIL_COLOR)
        pdf.set_font(pdf.font_bold, "B", 10)
        pdf.multi_cell(width, 6, pdf.prepare_text(f"Auto-fail triggered by: {failed}"))
        pdf.set_text_color(*TEXT)
    pdf.ln(2)


def _render_criteria_table(pdf: ScorecardPDF, session: Session, scores: Sequence[ScoreRecord]) -> None:
    snapshot = session.template_snapshot
    show_weights = snapshot.template.settings.show_weights_to_agents
    headers = ["Criterion", "Answer", "Score"] + (["Weight"] if show_weights else [])
    ratios = [0.38, 0.34, 0.14, 0.14] if show_weights else [0.44, 0.38, 0.18]
    widths = [_effective_width(pdf) * ratio for ratio in ratios]

    pdf.set_x(pdf.l_margin)
    pdf.set_fill_color(*ACCENT)
    pdf.set_text_color(255, 255, 255)
    pdf.set_font(pdf.font_bold, "B", 10)
    for idx, title in enumerate(headers):
        pdf.cell(widths[idx], 8, title, align="L", fill=True)
    pdf.ln(8)
    pdf.set_text_color(*TEXT)

    by_id: Dict[str, ScoreRecord] = {score.criteria_id: score for score in scores}
    group_names = {group.id: group.name for group in snapshot.groups}
    pdf.set_font(pdf.font_regular, "", 10)
    for idx, criterion in enumerate(snapshot.criteria):
        score = by_id.get(criterion.id)
        if score is None:
            answer, points = "Not scored", "-"
        else:
            answer = display_value(criterion, score.value, is_na=score.is_na)
            points = "N/A" if score.is_na else _fmt_number(score.normalized_score)
        label = criterion.name or criterion.id
        if criterion.group_id in group_names:
            label = f"{group_names[criterion.group_id]} / {label}"
        if score is not None and score.is_auto_fail_triggered:
            label = f"{label} (auto-fail)"
        fill = idx % 2 == 0
        if fill:
            pdf.set_fill_color(247, 250, 255)
        pdf.set_x(pdf.l_margin)
        pdf.cell(widths[0], 7, pdf.prepare_text(label[:60]), fill=fill)
        pdf.cell(widths[1], 7, pdf.prepare_text(answer[:55]), fill=fill)
        pdf.cell(widths[2], 7, points, fill=fill)
        if show_weights:
            pdf.cell(widths[3], 7, _fmt_number(criterion.weight), fill=fill)
        pdf.ln(7)
    pdf.ln(2)


def _render_notes(pdf: ScorecardPDF, session: Session, scores: Sequence[ScoreRecord]) -> None:
    blocks: List[Tuple[str, str]] = []
    if session.coach_notes:
        blocks.append(("Coach notes", session.coach_notes))
    names = {criterion.id: criterion.name for criterion in session.template_snapshot.criteria}
    for score in scores:
        if score.comment:
            blocks.append((names.get(score.criteria_id, score.criteria_id), score.comment))
    if session.review_notes or session.reviewer_rating:
        rating = f" (rating {session.reviewer_rating}/5)" if session.reviewer_rating else ""
        blocks.append((f"Review{rating}", session.review_notes or "-"))
    if session.dispute_reason:
        blocks.append(("Dispute", session.dispute_reason))
    if session.dispute_resolution:
        blocks.append(("Resolution", session.dispute_resolution))
    if not blocks:
        pdf.set_x(pdf.l_margin)
        pdf.set_text_color(*MUTED)
        pdf.set_font(pdf.font_regular, "", 10)
        pdf.multi_cell(_effective_width(pdf), 6, "No notes recorded for this session.")
        pdf.set_text_color(*TEXT)
        return
    for title, body in blocks:
        pdf.set_x(pdf.l_margin)
        pdf.set_font(pdf.font_bold, "B", 10)
        pdf.multi_cell(_effective_width(pdf), 6, pdf.prepare_text(title))
        pdf.set_x(pdf.l_margin)
        pdf.set_font(pdf.font_regular, "", 10)
        pdf.multi_cell(_effective_width(pdf), 5.5, pdf.prepare_text(body))
        pdf.ln(1)


def render_scorecard_pdf(session: Session, scores: Sequence[ScoreRecord]) -> bytes:  # Build PDF bytes for a scored session
    if session.status not in SCORED_STATUSES:
        raise StateError(f"Scorecards are only available for scored sessions; session is {session.status}")

    snapshot = session.template_snapshot
    pdf = ScorecardPDF()
    pdf.use_unicode_fonts(settings.SCORECARD_FONT_PATH, settings.SCORECARD_FONT_BOLD_PATH)
    pdf.alias_nb_pages()
    pdf.header_title = f"{snapshot.template.name} - Call Scorecard"
    pdf.set_margins(15, 22, 15)
    pdf.set_auto_page_break(auto=True, margin=15)
    pdf.add_page()

    _section_title(pdf, "Session Overview")
    _meta_block(
        pdf,
        [
            ("Session ID", session.id),
            ("Status", session.status.replace("_", " ").title()),
            ("Coach", session.coach_id or "-"),
            ("Agent", session.agent_id or "-"),
            ("Call", session.call_id or "-"),
            ("Template version", f"v{session.template_version}"),
            ("Scoring method", snapshot.template.scoring_method.replace("_", " ")),
            ("Pass threshold", _fmt_number(snapshot.template.pass_threshold, "%")),
            ("Created", _format_datetime(session.created_at)),
            ("Completed", _format_datetime(session.completed_at)),
        ],
    )

    _render_verdict(pdf, session)

    _section_title(pdf, "Criteria")
    _render_criteria_table(pdf, session, scores)

    _section_title(pdf, "Notes")
    _render_notes(pdf, session, scores)

    return bytes(pdf.output())


__all__ = ["ScorecardPDF", "render_scorecard_pdf"]
