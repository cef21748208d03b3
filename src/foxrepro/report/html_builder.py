"""Render the narrative, tables and figures into one HTML file.

Figures are embedded as base64 PNG and the stylesheet is inlined from
``templates/report.css``, so the report can be mailed or archived as a
single file.
"""

import html as html_lib
import logging
from datetime import datetime
from pathlib import Path
from typing import Dict, List

import numpy as np
import pandas as pd
from jinja2 import Environment, FileSystemLoader, StrictUndefined

from ..visualization.figures import FigureResult
from .narrative import SectionContent

logger = logging.getLogger(__name__)

TEMPLATES = Path(__file__).parent / "templates"
REPORT_TEMPLATE = "report.html.j2"


def _format_cell(val) -> str:
    if isinstance(val, (bool, np.bool_)):
        return "yes" if val else "no"
    if isinstance(val, (float, np.floating)):
        if np.isnan(val):
            return "–"
        if val != 0 and abs(val) < 1e-3:
            return f"{val:.2e}"
        return f"{val:.4f}"
    return html_lib.escape(str(val))


def _cell(val) -> str:
    numeric = isinstance(val, (int, float, np.number)) and not isinstance(val, (bool, np.bool_))
    css = ' class="num"' if numeric else ""
    return f"<td{css}>{_format_cell(val)}</td>"


def html_table(df: pd.DataFrame, caption: str = "", index: bool = True) -> str:
    """Render a results table as HTML.

    Floats get four decimals (scientific below 1e-3), missing values a dash
    and booleans yes/no. Numeric cells are right-aligned by the stylesheet.

    Args:
        df: Table to render.
        caption: Caption shown above the table.
        index: Render the index as the first column.
    """
    if index:
        df = df.reset_index()

    head = "".join(f"<th>{html_lib.escape(str(c))}</th>" for c in df.columns)
    rows = ["<tr>" + "".join(_cell(v) for v in row) + "</tr>" for row in df.itertuples(index=False)]

    parts = ["<table>"]
    if caption:
        parts.append(f"<caption>{html_lib.escape(caption)}</caption>")
    parts.append(f"<thead><tr>{head}</tr></thead>")
    parts.append("<tbody>\n" + "\n".join(rows) + "\n</tbody>")
    parts.append("</table>")
    return "\n".join(parts)


def build_report(
    sections: List[SectionContent],
    figures: List[FigureResult],
    tables: Dict[str, str],
    output_path: Path,
    title: str = "Arctic fox reproduction",
    subtitle: str = "",
    seed: int = 0,
) -> Path:
    """Write the HTML report.

    Sections pick their tables and figures by name; names without a
    generated counterpart are logged and left out of the page.

    Args:
        sections: Narrative sections in reading order.
        figures: Rendered figures.
        tables: HTML tables by name, from ``html_table``.
        output_path: Target HTML file.
        title: Page title.
        subtitle: Line under the title.
        seed: Seed of the run, printed in the header.

    Returns:
        ``output_path``
    """
    by_name = {fig.name: fig for fig in figures}

    for section in sections:
        absent = [n for n in section.figure_names if n not in by_name]
        absent += [n for n in section.table_names if n not in tables]
        if absent:
            logger.warning(f"Section '{section.section_id}' references missing items: {absent}")

    env = Environment(
        loader=FileSystemLoader(str(TEMPLATES)),
        undefined=StrictUndefined,
        autoescape=False,
    )
    page = env.get_template(REPORT_TEMPLATE).render(
        title=title,
        subtitle=subtitle,
        generated_date=datetime.now().strftime("%Y-%m-%d %H:%M"),
        seed=seed,
        sections=sections,
        figures=by_name,
        tables=tables,
    )

    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(page, encoding="utf-8")
    size_kb = output_path.stat().st_size / 1024
    logger.info(f"Report written to {output_path} ({size_kb:.1f} KB)")
    return output_path
