"""
Report Generation Service for FMEA projects

Provides:
- PDF analysis report (reportlab): project information, executive summary
  KPIs, risk distribution and one section per failure mode
- Excel workbook (pandas + openpyxl): Project Info, Failure Modes Summary,
  Detailed FMEA, Risk Distribution and Action Status sheets
- Export filters on representative RPN and failure mode status

Every RPN shown in a report comes from the risk service.
"""

import io
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd
from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER, TA_LEFT
from reportlab.lib.pagesizes import A4, letter
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import HRFlowable, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle
from xml.sax.saxutils import escape

from fmea_app.services.risk_service import (
    BandLike,
    DEFAULT_DASHBOARD_CUTOFFS,
    build_project_report,
    classify_band,
    compute_post_mitigation_risk,
    score_failure_mode,
)

logger = logging.getLogger(__name__)

PRIMARY_COLOR = '#0054a6'


@dataclass
class ExportOptions:
    """Filters and toggles applied to an export"""
    min_rpn: Optional[int] = None
    statuses: List[str] = field(default_factory=list)
    include_metrics: bool = True
    page_size: str = "letter"


def filter_failure_modes(failure_modes: Sequence[Dict[str, Any]],
                         options: ExportOptions) -> List[Dict[str, Any]]:
    """Keep failure modes with representative RPN >= min_rpn and a listed status."""
    result = list(failure_modes)
    if options.min_rpn is not None:
        result = [fm for fm in result if score_failure_mode(fm).rpn >= options.min_rpn]
    if options.statuses:
        result = [fm for fm in result if fm.get('status') in options.statuses]
    return result


def export_filename(project: Dict[str, Any], extension: str) -> str:
    safe_name = re.sub(r'[^A-Za-z0-9]', '_', project.get('name') or 'project')
    return f"FMEA_{safe_name}_{datetime.now().strftime('%Y-%m-%d')}.{extension}"


def _actions_of(failure_modes: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [a for fm in failure_modes for a in (fm.get('actions') or [])]


class ReportGenerationService:
    """Builds PDF and Excel exports for one project"""

    def __init__(self, thresholds: Sequence[BandLike], cutoffs: Optional[Dict[str, int]] = None):
        self.thresholds = list(thresholds)
        self.cutoffs = {**DEFAULT_DASHBOARD_CUTOFFS, **(cutoffs or {})}
        self._init_styles()

    def _init_styles(self):
        """Initialize paragraph styles for reports"""
        self.styles = getSampleStyleSheet()

        self.styles.add(ParagraphStyle(
            name='ReportTitle',
            parent=self.styles['Heading1'],
            fontSize=24,
            spaceAfter=30,
            alignment=TA_CENTER,
            textColor=colors.HexColor(PRIMARY_COLOR)
        ))

        self.styles.add(ParagraphStyle(
            name='ReportSubtitle',
            parent=self.styles['Normal'],
            fontSize=14,
            spaceAfter=20,
            alignment=TA_CENTER,
            textColor=colors.gray
        ))

        self.styles.add(ParagraphStyle(
            name='SectionHeader',
            parent=self.styles['Heading2'],
            fontSize=14,
            spaceBefore=20,
            spaceAfter=10,
            textColor=colors.HexColor(PRIMARY_COLOR)
        ))

        self.styles.add(ParagraphStyle(
            name='FailureModeHeader',
            parent=self.styles['Heading3'],
            fontSize=11,
            spaceBefore=14,
            spaceAfter=6,
        ))

        self.styles.add(ParagraphStyle(
            name='TableHeader',
            parent=self.styles['Normal'],
            fontSize=10,
            textColor=colors.white,
            alignment=TA_CENTER
        ))

        self.styles.add(ParagraphStyle(
            name='TableCell',
            parent=self.styles['Normal'],
            fontSize=9,
            alignment=TA_LEFT
        ))

        self.styles.add(ParagraphStyle(
            name='Footer',
            parent=self.styles['Normal'],
            fontSize=8,
            textColor=colors.gray,
            alignment=TA_CENTER
        ))

    def _get_page_size(self, size_name: str):
        if size_name.lower() == 'a4':
            return A4
        return letter

    def _band_label(self, rpn: int) -> str:
        if rpn <= 0:
            return '-'
        return classify_band(rpn, self.thresholds).label

    def _create_header_table(self, title: str, subtitle: str) -> Table:
        data = [
            [Paragraph(title, self.styles['ReportTitle'])],
            [Paragraph(escape(subtitle), self.styles['ReportSubtitle'])],
            [Paragraph(f"Generated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}", self.styles['Footer'])],
        ]
        table = Table(data, colWidths=[6.5*inch])
        table.setStyle(TableStyle([
            ('ALIGN', (0, 0), (-1, -1), 'CENTER'),
            ('BOTTOMPADDING', (0, 0), (-1, -1), 12),
        ]))
        return table

    def _create_table(self, headers: List[str], data: List[List[Any]],
                      col_widths: Optional[List[float]] = None) -> Table:
        """Create a styled table"""
        table_data = [[Paragraph(escape(str(h)), self.styles['TableHeader']) for h in headers]]
        for row in data:
            table_data.append([
                Paragraph(escape(str(cell)) if cell is not None and cell != '' else '-', self.styles['TableCell'])
                for cell in row
            ])

        table = Table(table_data, colWidths=col_widths, repeatRows=1)
        table.setStyle(TableStyle([
            ('BACKGROUND', (0, 0), (-1, 0), colors.HexColor(PRIMARY_COLOR)),
            ('TEXTCOLOR', (0, 0), (-1, 0), colors.white),
            ('ALIGN', (0, 0), (-1, 0), 'CENTER'),
            ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
            ('BOTTOMPADDING', (0, 0), (-1, 0), 8),
            ('TOPPADDING', (0, 0), (-1, 0), 8),
            ('FONTNAME', (0, 1), (-1, -1), 'Helvetica'),
            ('BOTTOMPADDING', (0, 1), (-1, -1), 6),
            ('TOPPADDING', (0, 1), (-1, -1), 6),
            ('ROWBACKGROUNDS', (0, 1), (-1, -1), [colors.white, colors.HexColor('#f5f5f5')]),
            ('GRID', (0, 0), (-1, -1), 0.5, colors.HexColor('#cccccc')),
            ('BOX', (0, 0), (-1, -1), 1, colors.HexColor(PRIMARY_COLOR)),
        ]))
        return table

    def _create_kpi_box(self, label: str, value: str, color: str = PRIMARY_COLOR) -> Table:
        data = [
            [Paragraph(f'<font color="{color}" size="18"><b>{value}</b></font>', self.styles['Normal'])],
            [Paragraph(f'<font color="gray" size="9">{label}</font>', self.styles['Normal'])]
        ]
        table = Table(data, colWidths=[1.5*inch])
        table.setStyle(TableStyle([
            ('ALIGN', (0, 0), (-1, -1), 'CENTER'),
            ('VALIGN', (0, 0), (-1, -1), 'MIDDLE'),
            ('BOX', (0, 0), (-1, -1), 1, colors.HexColor(color)),
            ('BACKGROUND', (0, 0), (-1, -1), colors.HexColor('#f8f9fa')),
            ('TOPPADDING', (0, 0), (-1, -1), 10),
            ('BOTTOMPADDING', (0, 0), (-1, -1), 10),
        ]))
        return table

    # ==========================================
    # PDF report
    # ==========================================

    def generate_pdf_report(self, project: Dict[str, Any], failure_modes: Sequence[Dict[str, Any]],
                            options: Optional[ExportOptions] = None) -> bytes:
        """Generate the FMEA analysis report as PDF bytes"""
        options = options or ExportOptions()
        exported = filter_failure_modes(failure_modes, options)
        report = build_project_report(exported, _actions_of(exported), self.cutoffs)
        asset = project.get('asset') or {}

        buffer = io.BytesIO()
        doc = SimpleDocTemplate(
            buffer,
            pagesize=self._get_page_size(options.page_size),
            rightMargin=0.75*inch,
            leftMargin=0.75*inch,
            topMargin=0.75*inch,
            bottomMargin=0.75*inch,
            title=f"FMEA Analysis Report - {project.get('name', '')}",
        )

        story = []
        story.append(self._create_header_table("FMEA Analysis Report", project.get('name', '')))
        story.append(Spacer(1, 20))
        story.append(HRFlowable(width="100%", thickness=2, color=colors.HexColor(PRIMARY_COLOR)))
        story.append(Spacer(1, 20))

        story.append(Paragraph("Project Information", self.styles['SectionHeader']))
        info_rows = [
            ['Project Name', project.get('name')],
            ['Asset', f"{asset.get('name', '-')} ({asset.get('type', '-')})"],
            ['Criticality', asset.get('criticality')],
            ['Status', project.get('status')],
            ['Failure Modes Exported', len(exported)],
        ]
        story.append(self._create_table(['Field', 'Value'], info_rows, col_widths=[2*inch, 4.5*inch]))

        if options.include_metrics:
            metrics = report['metrics']
            story.append(Paragraph("Executive Summary", self.styles['SectionHeader']))
            kpi_row = [
                self._create_kpi_box("Failure Modes", str(metrics['totalFailureModes'])),
                self._create_kpi_box(f"High Risk (RPN &gt;= {self.cutoffs['high']})",
                                     str(metrics['highRiskModes']), '#f97316'),
                self._create_kpi_box(f"Critical (RPN &gt;= {self.cutoffs['critical']})",
                                     str(metrics['criticalModes']), '#ef4444'),
                self._create_kpi_box("Average RPN", str(metrics['averageRPN'])),
            ]
            story.append(Table([kpi_row], colWidths=[1.65*inch] * 4))
            story.append(Spacer(1, 10))
            story.append(Paragraph(
                f"Open actions: {metrics['openActions']} | Completed actions: {metrics['completedActions']}",
                self.styles['Normal']
            ))

            story.append(Paragraph("Risk Distribution", self.styles['SectionHeader']))
            story.append(self._create_table(
                ['Risk Level', 'Count', 'Percentage'],
                [[d['range'], d['count'], f"{d['percentage']}%"] for d in report['chartData']['riskDistribution']],
            ))

            top = report['chartData']['topRisks']
            if top:
                story.append(Paragraph("Top Risks", self.styles['SectionHeader']))
                story.append(self._create_table(
                    ['Failure Mode', 'RPN', 'S', 'O', 'D'],
                    [[t['failureMode'], t['rpn'], t['severity'], t['occurrence'], t['detection']] for t in top],
                    col_widths=[3.5*inch, 0.9*inch, 0.7*inch, 0.7*inch, 0.7*inch],
                ))

        story.append(Paragraph("Failure Modes Analysis", self.styles['SectionHeader']))
        if not exported:
            story.append(Paragraph("No failure modes match the export filters.", self.styles['Normal']))
        for index, fm in enumerate(exported, start=1):
            story.extend(self._failure_mode_section(index, fm))

        story.append(Spacer(1, 30))
        story.append(HRFlowable(width="100%", thickness=1, color=colors.gray))
        story.append(Paragraph("FMEA Builder", self.styles['Footer']))

        doc.build(story)
        logger.info(f"Generated PDF report for project {project.get('id')} with {len(exported)} failure modes")
        return buffer.getvalue()

    def _failure_mode_section(self, index: int, fm: Dict[str, Any]) -> list:
        risk = score_failure_mode(fm)
        flowables = [
            Paragraph(f"{index}. {escape(fm.get('description', ''))}", self.styles['FailureModeHeader']),
            Paragraph(
                f"Process step: {escape(fm.get('processStep') or '-')} | Status: {fm.get('status', '-')} | "
                f"RPN: {risk.rpn} ({self._band_label(risk.rpn)})",
                self.styles['Normal']
            ),
            Spacer(1, 6),
        ]
        rows = []
        for cause in fm.get('causes') or []:
            rows.append(['Cause', cause.get('description'), f"O={cause.get('occurrence')}"])
        for effect in fm.get('effects') or []:
            post = compute_post_mitigation_risk(effect)
            value = f"S={effect.get('severity')}" + (f", post RPN={post}" if post else '')
            rows.append(['Effect', effect.get('description'), value])
        for control in fm.get('controls') or []:
            rows.append([f"Control ({control.get('type')})", control.get('description'), f"D={control.get('detection')}"])
        for action in fm.get('actions') or []:
            rows.append(['Action', action.get('description'), f"{action.get('owner') or '-'} / {action.get('status')}"])
        if rows:
            flowables.append(self._create_table(
                ['Type', 'Description', 'Rating / Status'], rows,
                col_widths=[1.3*inch, 3.5*inch, 1.7*inch],
            ))
        return flowables

    # ==========================================
    # Excel workbook
    # ==========================================

    def generate_excel_report(self, project: Dict[str, Any], failure_modes: Sequence[Dict[str, Any]],
                              options: Optional[ExportOptions] = None) -> bytes:
        """Generate the FMEA workbook as .xlsx bytes"""
        options = options or ExportOptions()
        exported = filter_failure_modes(failure_modes, options)
        report = build_project_report(exported, _actions_of(exported), self.cutoffs)
        metrics = report['metrics']
        asset = project.get('asset') or {}

        info_rows = [
            ['Project Information', ''],
            ['Project Name', project.get('name', '')],
            ['Asset Name', asset.get('name', '')],
            ['Asset Type', asset.get('type', '')],
            ['Asset ID', asset.get('assetId', '')],
            ['Criticality', asset.get('criticality', '')],
            ['Context', asset.get('context', '')],
            ['Generated Date', datetime.now().strftime('%Y-%m-%d')],
        ]
        if options.include_metrics:
            info_rows.extend([
                ['', ''],
                ['Summary', ''],
                ['Total Failure Modes', metrics['totalFailureModes']],
                ['High Risk Modes', metrics['highRiskModes']],
                ['Critical Modes', metrics['criticalModes']],
                ['Average RPN', metrics['averageRPN']],
                ['Open Actions', metrics['openActions']],
                ['Completed Actions', metrics['completedActions']],
            ])
        info_df = pd.DataFrame(info_rows)

        summary_df = pd.DataFrame([
            {
                'ID': fm['id'],
                'Process Step': fm.get('processStep', ''),
                'Failure Mode': fm.get('description', ''),
                'Status': fm.get('status', ''),
                'Max RPN': score_failure_mode(fm).rpn,
                'Risk Band': self._band_label(score_failure_mode(fm).rpn),
                'Causes Count': len(fm.get('causes') or []),
                'Effects Count': len(fm.get('effects') or []),
                'Controls Count': len(fm.get('controls') or []),
                'Actions Count': len(fm.get('actions') or []),
                'Created Date': (fm.get('createdAt') or '')[:10],
            } for fm in exported
        ], columns=['ID', 'Process Step', 'Failure Mode', 'Status', 'Max RPN', 'Risk Band', 'Causes Count',
                    'Effects Count', 'Controls Count', 'Actions Count', 'Created Date'])

        detail_columns = ['Failure Mode ID', 'Process Step', 'Failure Mode', 'Type', 'Item',
                          'Description', 'Value', 'Status', 'Owner', 'Due Date']
        detail_df = pd.DataFrame(self._detail_rows(exported), columns=detail_columns)

        distribution_df = pd.DataFrame([
            {'Risk Level': d['range'], 'Count': d['count'], 'Percentage': f"{d['percentage']}%"}
            for d in report['chartData']['riskDistribution']
        ])
        action_df = pd.DataFrame([
            {'Status': a['status'], 'Count': a['count'], 'Percentage': f"{a['percentage']}%"}
            for a in report['chartData']['actionStatus']
        ])

        buffer = io.BytesIO()
        with pd.ExcelWriter(buffer, engine='openpyxl') as writer:
            info_df.to_excel(writer, sheet_name='Project Info', index=False, header=False)
            summary_df.to_excel(writer, sheet_name='Failure Modes Summary', index=False)
            detail_df.to_excel(writer, sheet_name='Detailed FMEA', index=False)
            if options.include_metrics:
                distribution_df.to_excel(writer, sheet_name='Risk Distribution', index=False)
                action_df.to_excel(writer, sheet_name='Action Status', index=False)

        logger.info(f"Generated Excel workbook for project {project.get('id')} with {len(exported)} failure modes")
        return buffer.getvalue()

    def _detail_rows(self, failure_modes: Sequence[Dict[str, Any]]) -> List[List[Any]]:
        rows = []
        for fm in failure_modes:
            prefix = [fm['id'], fm.get('processStep', ''), fm.get('description', '')]
            for cause in fm.get('causes') or []:
                rows.append(prefix + ['Cause', 'Description', cause.get('description'), cause.get('occurrence'), '', '', ''])
            for effect in fm.get('effects') or []:
                rows.append(prefix + ['Effect', 'Description', effect.get('description'), effect.get('severity'), '', '', ''])
            for control in fm.get('controls') or []:
                rows.append(prefix + ['Control', control.get('type'), control.get('description'), control.get('detection'), '', '', ''])
            for action in fm.get('actions') or []:
                rows.append(prefix + ['Action', 'Description', action.get('description'), '',
                                      action.get('status'), action.get('owner'), action.get('dueDate') or ''])
        return rows
