"""
Export Reports module for the CMMC tracker.

Renders a stored ``ReportData`` as HTML, CSV, PDF or Excel for
regulatory documentation and business records.
"""
from __future__ import annotations

import csv
import html
import io
from typing import Any, Dict, List

import pandas as pd

# PDF generation
from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER, TA_JUSTIFY
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import PageBreak, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

# Excel generation
from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils.dataframe import dataframe_to_rows

from cmmc_tracker.models import ReportData
from cmmc_tracker.repository import format_date

HEADER_COLOR = '#2c3e50'
ACCENT_COLOR = '#3498db'
ROW_ALT_COLOR = '#f8f9fa'

SUMMARY_LABELS = (
    ('overall_score', 'Overall Score (%)'),
    ('risk_level', 'Risk Level'),
    ('controls_compliance', 'Controls Compliance (%)'),
    ('policies_compliance', 'Policies Compliance (%)'),
    ('evidence_compliance', 'Evidence Compliance (%)'),
    ('total_controls', 'Total Controls'),
    ('implemented_controls', 'Implemented Controls'),
    ('overdue_reviews', 'Overdue Reviews'),
    ('total_policies', 'Total Policies'),
    ('effective_policies', 'Effective Policies'),
    ('total_evidence', 'Total Evidence'),
    ('approved_evidence', 'Approved Evidence'),
    ('team_members', 'Team Members'),
    ('team_engagement', 'Team Engagement (%)'),
    ('overdue_tasks', 'Overdue Tasks'),
    ('total_events', 'Calendar Events'),
    ('overdue_events', 'Overdue Events'),
    ('upcoming_events', 'Upcoming Events'),
)


def _display(value: Any) -> str:
    if isinstance(value, float):
        return f"{value:.1f}"
    return str(value)


def summary_rows(report: ReportData) -> List[List[str]]:
    """(label, value) rows for the summary keys present in ``report``."""
    return [
        [label, _display(report.summary[key])]
        for key, label in SUMMARY_LABELS
        if key in report.summary
    ]


def metadata_rows(report: ReportData) -> List[List[str]]:
    rows = [
        ['Report:', report.title],
        ['Framework:', report.framework],
        ['Status:', report.status],
        ['Generated By:', report.generated_by],
        ['Generated At:', report.generated_at.strftime('%Y-%m-%d %H:%M:%S') if report.generated_at else ''],
    ]
    if report.date_range is not None:
        rows.append(['Period:', f"{format_date(report.date_range.start)} - {format_date(report.date_range.end)}"])
    return rows


def section_table(section: Dict[str, Any]) -> List[List[Any]]:
    """Flatten a chart, table or metrics section into header + rows."""
    kind = section.get('type')
    if kind == 'table':
        return [list(section.get('columns', []))] + [list(r) for r in section.get('rows', [])]
    if kind == 'chart':
        chart = section.get('chart', {})
        return [['Label', 'Value']] + [list(p) for p in zip(chart.get('labels', []), chart.get('values', []))]
    if kind == 'metrics':
        return [['Metric', 'Value']] + [
            [m.get('label', ''), f"{_display(m.get('value', ''))}{m.get('unit', '')}"]
            for m in section.get('metrics', [])
        ]
    return []


class ReportRenderer:
    """Renders compliance reports in PDF and Excel formats."""

    def __init__(self):
        self.styles = getSampleStyleSheet()
        self._setup_custom_styles()

    def _setup_custom_styles(self):
        """Set up custom styles for PDF generation."""
        self.styles.add(ParagraphStyle(
            name='CustomTitle',
            parent=self.styles['Heading1'],
            fontSize=20,
            spaceAfter=20,
            alignment=TA_CENTER,
            textColor=colors.HexColor(HEADER_COLOR)
        ))

        self.styles.add(ParagraphStyle(
            name='CustomHeading',
            parent=self.styles['Heading2'],
            fontSize=14,
            spaceBefore=12,
            spaceAfter=6,
            textColor=colors.HexColor('#34495e')
        ))

        self.styles.add(ParagraphStyle(
            name='CustomBody',
            parent=self.styles['Normal'],
            fontSize=10,
            spaceAfter=6,
            alignment=TA_JUSTIFY
        ))

    @staticmethod
    def _grid_style() -> TableStyle:
        return TableStyle([
            ('BACKGROUND', (0, 0), (-1, 0), colors.HexColor(ACCENT_COLOR)),
            ('TEXTCOLOR', (0, 0), (-1, 0), colors.whitesmoke),
            ('ALIGN', (0, 0), (-1, -1), 'CENTER'),
            ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
            ('FONTSIZE', (0, 0), (-1, -1), 10),
            ('ROWBACKGROUNDS', (0, 1), (-1, -1), [colors.white, colors.HexColor(ROW_ALT_COLOR)]),
            ('GRID', (0, 0), (-1, -1), 1, colors.black)
        ])

    def generate_pdf(self, report: ReportData) -> bytes:
        buffer = io.BytesIO()
        doc = SimpleDocTemplate(
            buffer,
            pagesize=A4,
            rightMargin=72, leftMargin=72,
            topMargin=72, bottomMargin=18,
            title=report.title,
        )

        story = []
        story.append(Paragraph(html.escape(report.title), self.styles['CustomTitle']))
        if report.description:
            story.append(Paragraph(html.escape(report.description), self.styles['CustomBody']))
        story.append(Spacer(1, 20))

        metadata_table = Table(metadata_rows(report), colWidths=[2*inch, 3.5*inch])
        metadata_table.setStyle(TableStyle([
            ('BACKGROUND', (0, 0), (-1, -1), colors.HexColor(ROW_ALT_COLOR)),
            ('TEXTCOLOR', (0, 0), (-1, -1), colors.black),
            ('ALIGN', (0, 0), (-1, -1), 'LEFT'),
            ('FONTNAME', (0, 0), (0, -1), 'Helvetica-Bold'),
            ('FONTSIZE', (0, 0), (-1, -1), 10),
            ('GRID', (0, 0), (-1, -1), 1, colors.black)
        ]))
        story.append(metadata_table)
        story.append(Spacer(1, 20))

        rows = summary_rows(report)
        if rows:
            story.append(Paragraph("Compliance Summary", self.styles['CustomHeading']))
            summary_table = Table([['Metric', 'Value']] + rows, colWidths=[3*inch, 2*inch])
            summary_table.setStyle(self._grid_style())
            story.append(summary_table)
            story.append(Spacer(1, 20))

        for section in report.sections:
            story.append(Paragraph(html.escape(section.get('title', '')), self.styles['CustomHeading']))
            if section.get('type') == 'text':
                story.append(Paragraph(html.escape(section.get('content', '')), self.styles['CustomBody']))
            else:
                data = [[str(cell) for cell in row] for row in section_table(section)]
                if len(data) > 1:
                    table = Table(data)
                    table.setStyle(self._grid_style())
                    story.append(table)
            story.append(Spacer(1, 12))

        if report.recommendations:
            story.append(PageBreak())
            story.append(Paragraph("Recommendations", self.styles['CustomHeading']))
            for i, recommendation in enumerate(report.recommendations, 1):
                story.append(Paragraph(f"{i}. {html.escape(recommendation)}", self.styles['CustomBody']))

        doc.build(story)
        buffer.seek(0)
        return buffer.getvalue()

    def generate_excel(self, report: ReportData) -> bytes:
        """Excel workbook with a summary sheet, one sheet per tabular section and the recommendations."""
        buffer = io.BytesIO()
        wb = Workbook()
        wb.remove(wb.active)

        header_font = Font(bold=True, color="FFFFFF")
        header_fill = PatternFill(start_color="2C3E50", end_color="2C3E50", fill_type="solid")
        header_alignment = Alignment(horizontal="center", vertical="center")
        border = Border(left=Side(style='thin'), right=Side(style='thin'),
                        top=Side(style='thin'), bottom=Side(style='thin'))

        sheets = [("Summary", pd.DataFrame(metadata_rows(report) + summary_rows(report), columns=['Field', 'Value']))]
        for section in report.sections:
            data = section_table(section)
            if len(data) > 1:
                sheets.append((section.get('title', section.get('id', 'Section')), pd.DataFrame(data[1:], columns=data[0])))
        sheets.append(("Recommendations", pd.DataFrame(
            {'#': range(1, len(report.recommendations) + 1), 'Recommendation': report.recommendations}
        )))

        for title, df in sheets:
            # Excel caps sheet titles at 31 characters
            ws = wb.create_sheet(title[:31])
            for row in dataframe_to_rows(df, index=False, header=True):
                ws.append(row)
            for cell in ws[1]:
                cell.font = header_font
                cell.fill = header_fill
                cell.alignment = header_alignment
                cell.border = border

            # Auto-adjust column widths
            for column in ws.columns:
                max_length = max((len(str(cell.value)) for cell in column if cell.value is not None), default=0)
                ws.column_dimensions[column[0].column_letter].width = min(max_length + 2, 50)

        wb.save(buffer)
        buffer.seek(0)
        return buffer.getvalue()


def report_to_html(report: ReportData) -> str:
    """Standalone HTML page for ``report``."""
    esc = html.escape
    parts = [
        "<!DOCTYPE html>",
        "<html><head><meta charset=\"utf-8\">",
        f"<title>{esc(report.title)}</title>",
        "<style>body{font-family:Helvetica,Arial,sans-serif;color:#2c3e50;margin:2em}"
        "table{border-collapse:collapse;margin-bottom:1em}"
        "th{background:#3498db;color:#fff}td,th{border:1px solid #000;padding:4px 8px}"
        "tr:nth-child(even) td{background:#f8f9fa}</style>",
        "</head><body>",
        f"<h1>{esc(report.title)}</h1>",
    ]
    if report.description:
        parts.append(f"<p>{esc(report.description)}</p>")

    parts.append("<table>")
    for label, value in metadata_rows(report):
        parts.append(f"<tr><th>{esc(label)}</th><td>{esc(value)}</td></tr>")
    parts.append("</table>")

    for section in report.sections:
        parts.append(f"<h2>{esc(section.get('title', ''))}</h2>")
        if section.get('type') == 'text':
            parts.append(f"<p>{esc(section.get('content', ''))}</p>")
            continue
        data = section_table(section)
        if not data:
            continue
        parts.append("<table>")
        parts.append("<tr>" + "".join(f"<th>{esc(str(h))}</th>" for h in data[0]) + "</tr>")
        for row in data[1:]:
            parts.append("<tr>" + "".join(f"<td>{esc(str(c))}</td>" for c in row) + "</tr>")
        parts.append("</table>")

    if report.recommendations:
        parts.append("<h2>Recommendations</h2><ol>")
        parts.extend(f"<li>{esc(r)}</li>" for r in report.recommendations)
        parts.append("</ol>")
    parts.append("</body></html>")
    return "\n".join(parts)


def report_to_csv(report: ReportData) -> str:
    """Metric/value CSV of the report summary followed by its recommendations."""
    rows = [['Report', report.title], ['Framework', report.framework], ['Status', report.status]]
    rows.extend(summary_rows(report))
    rows.extend([f'Recommendation {i}', r] for i, r in enumerate(report.recommendations, 1))
    df = pd.DataFrame(rows, columns=['Metric', 'Value'])
    return df.to_csv(index=False, quoting=csv.QUOTE_ALL, lineterminator="\n")


def report_to_pdf(report: ReportData) -> bytes:
    """Convenience function to render a report as PDF."""
    return ReportRenderer().generate_pdf(report)


def report_to_excel(report: ReportData) -> bytes:
    """Convenience function to render a report as an Excel workbook."""
    return ReportRenderer().generate_excel(report)
