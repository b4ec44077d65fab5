"""Word report assembly on top of python-docx.

Narrative text accepts a small inline markup: ``**bold**``, ``*italic*``
and ```code```.
"""
from __future__ import annotations
import re
import logging
from pathlib import Path
from typing import Optional, Union
import numpy as np
import pandas as pd
from docx import Document
from docx.shared import Pt, RGBColor, Inches
from docx.enum.text import WD_ALIGN_PARAGRAPH
from docx.enum.style import WD_STYLE_TYPE

from survival_report.utils import format_p_value

logger = logging.getLogger(__name__)

HEADING_COLOR = RGBColor(31, 73, 125)
TABLE_STYLE = "Light Grid Accent 1"
P_VALUE_COLUMNS = ("p", "P(>|Chi|)", "p_value")


def setup_styles(doc):
    """Configure Normal, Heading 1-3, Code and Caption styles."""
    style = doc.styles['Normal']
    font = style.font
    font.name = 'Calibri'
    font.size = Pt(11)

    for i in range(1, 4):
        heading_font = doc.styles[f'Heading {i}'].font
        heading_font.name = 'Calibri'
        heading_font.bold = True
        heading_font.color.rgb = HEADING_COLOR
        heading_font.size = Pt({1: 18, 2: 14, 3: 12}[i])

    try:
        code_style = doc.styles['Code']
    except KeyError:
        code_style = doc.styles.add_style('Code', WD_STYLE_TYPE.PARAGRAPH)
    code_style.font.name = 'Consolas'
    code_style.font.size = Pt(9)
    code_style.paragraph_format.left_indent = Inches(0.5)
    code_style.paragraph_format.space_before = Pt(6)
    code_style.paragraph_format.space_after = Pt(6)

    try:
        caption = doc.styles['Caption']
    except KeyError:
        caption = doc.styles.add_style('Caption', WD_STYLE_TYPE.PARAGRAPH)
    caption.font.name = 'Calibri'
    caption.font.size = Pt(9)
    caption.font.italic = True


def process_inline_formatting(text):
    """Split text into (segment, format) pairs for bold, italic and code runs.

    Returns:
        List of (text, format_dict) tuples where format_dict has 'bold',
        'italic' and 'code' flags

    Example:
        >>> process_inline_formatting("the **karno** term")[1]
        ('karno', {'bold': True, 'italic': False, 'code': False})
    """
    segments = []
    for part in re.split(r'(\*\*.*?\*\*|`.*?`|\*[^*]+?\*)', text):
        if not part:
            continue
        if part.startswith('**') and part.endswith('**') and len(part) > 4:
            segments.append((part[2:-2], {'bold': True, 'italic': False, 'code': False}))
        elif part.startswith('`') and part.endswith('`') and len(part) > 2:
            segments.append((part[1:-1], {'bold': False, 'italic': False, 'code': True}))
        elif part.startswith('*') and part.endswith('*') and len(part) > 2:
            segments.append((part[1:-1], {'bold': False, 'italic': True, 'code': False}))
        else:
            segments.append((part, {'bold': False, 'italic': False, 'code': False}))

    return segments if segments else [(text, {'bold': False, 'italic': False, 'code': False})]


def format_cell(value, column: str = "", float_format: str = "{:.3f}") -> str:
    """Render one table value; p-value columns use ``format_p_value``."""
    if value is None:
        return ""
    if isinstance(value, (float, np.floating)):
        if np.isnan(value):
            return ""
        if column in P_VALUE_COLUMNS:
            return format_p_value(float(value))
        if np.isinf(value):
            return "inf" if value > 0 else "-inf"
        return float_format.format(value)
    if isinstance(value, (bool, np.bool_)):
        return "yes" if value else "no"
    return str(value)


class ReportDocument:
    """A report under construction.

    Example:
        >>> report = ReportDocument("Veteran lung cancer trial")
        >>> report.add_heading("Data", level=1)
        >>> report.add_paragraph("The cohort has **137** subjects.")
        >>> report.add_table(summary, caption="Table 1. Quantitative fields")
        >>> report.add_figure("figures/km_trt.png", caption="Figure 1. Survival by treatment")
        >>> report.save("report.docx")
    """

    def __init__(self, title: str, author: str = "survival_report", subtitle: Optional[str] = None):
        self.doc = Document()
        setup_styles(self.doc)
        self.doc.core_properties.title = title
        self.doc.core_properties.author = author
        self.n_tables = 0
        self.n_figures = 0

        self.doc.add_heading(title, level=0)
        if subtitle:
            self.add_paragraph(subtitle)

    def add_heading(self, text: str, level: int = 1):
        return self.doc.add_heading(text, level=level)

    def add_paragraph(self, text: str, style_name: str = 'Normal'):
        """Add a paragraph with inline formatting."""
        para = self.doc.add_paragraph(style=style_name)
        for segment_text, formatting in process_inline_formatting(text):
            run = para.add_run(segment_text)
            if formatting['bold']:
                run.bold = True
            if formatting['italic']:
                run.italic = True
            if formatting['code']:
                run.font.name = 'Consolas'
                run.font.size = Pt(9)
        return para

    def add_bullets(self, items):
        for item in items:
            self.add_paragraph(item, 'List Bullet')

    def add_code(self, text: str):
        return self.doc.add_paragraph(text, style='Code')

    def add_caption(self, text: str):
        para = self.doc.add_paragraph(text, style='Caption')
        return para

    def add_table(
        self,
        df: pd.DataFrame,
        caption: Optional[str] = None,
        float_format: str = "{:.3f}",
        index: bool = True,
    ):
        """Add a DataFrame as a table, header row in bold.

        Args:
            df: Table content
            caption: Caption placed above the table
            float_format: Format for float cells (p-value columns excepted)
            index: Include the index as the first column
        """
        self.n_tables += 1
        if caption:
            self.add_caption(caption)

        frame = df.reset_index() if index else df
        header = [str(c) for c in frame.columns]
        table = self.doc.add_table(rows=len(frame) + 1, cols=len(header))
        table.style = TABLE_STYLE

        for j, name in enumerate(header):
            cell = table.rows[0].cells[j]
            cell.text = name
            for paragraph in cell.paragraphs:
                for run in paragraph.runs:
                    run.bold = True

        for i, row in enumerate(frame.itertuples(index=False), start=1):
            for j, value in enumerate(row):
                table.rows[i].cells[j].text = format_cell(value, header[j], float_format)

        self.doc.add_paragraph()
        return table

    def add_figure(self, path: Union[str, Path], caption: Optional[str] = None, width: float = 6.0):
        """Add a PNG figure centred on the page with a caption below."""
        self.n_figures += 1
        self.doc.add_picture(str(path), width=Inches(width))
        self.doc.paragraphs[-1].alignment = WD_ALIGN_PARAGRAPH.CENTER
        if caption:
            self.add_caption(caption)

    def page_break(self):
        self.doc.add_page_break()

    def save(self, path: Union[str, Path]) -> str:
        path = str(path)
        self.doc.save(path)
        logger.info(f"Report saved: {path} ({self.n_tables} tables, {self.n_figures} figures)")
        return path
