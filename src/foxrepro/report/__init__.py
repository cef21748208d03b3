"""Report generation: narrative text and the self-contained HTML document."""

from .html_builder import build_report, html_table
from .narrative import SectionContent, generate_all_sections

__all__ = [
    "SectionContent",
    "generate_all_sections",
    "build_report",
    "html_table",
]
