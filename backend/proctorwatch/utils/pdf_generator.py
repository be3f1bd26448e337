"""
PDF Integrity Report Generator - ProctorWatch
Renders a session integrity report with event charts and timeline
"""
from datetime import datetime
from io import BytesIO
from typing import Any
from xml.sax.saxutils import escape

import matplotlib
matplotlib.use('Agg')  # Use non-interactive backend
import matplotlib.pyplot as plt
from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import letter
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import Image as RLImage
from reportlab.platypus import PageBreak, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from proctorwatch.utils.report import TYPE_LABELS


SEVERITY_COLORS = {
    'high': '#dc2626',
    'medium': '#d97706',
    'low': '#fbbf24',
}


def score_color(score: int) -> colors.Color:
    if score >= 90:
        return colors.HexColor('#059669')
    if score >= 70:
        return colors.HexColor('#d97706')
    return colors.HexColor('#dc2626')


def create_pie_chart(data: dict[str, int], title: str) -> BytesIO:
    """Create a pie chart and return as BytesIO"""
    fig, ax = plt.subplots(figsize=(6, 4))

    filtered = {label: count for label, count in data.items() if count > 0}
    if filtered:
        ax.pie(filtered.values(), labels=filtered.keys(), autopct='%1.1f%%', startangle=90)
        ax.set_title(title)
    else:
        ax.text(0.5, 0.5, 'No Events', ha='center', va='center', fontsize=16)
        ax.set_title(title)

    buffer = BytesIO()
    plt.savefig(buffer, format='png', bbox_inches='tight', dpi=100)
    plt.close(fig)
    buffer.seek(0)
    return buffer


def create_timeline_chart(timeline: list[dict], title: str) -> BytesIO:
    """Scatter of events over time, one row per event type"""
    fig, ax = plt.subplots(figsize=(10, 4))

    if timeline:
        by_type: dict[str, list[datetime]] = {}
        severities: dict[str, list[str]] = {}
        for item in timeline:
            timestamp = datetime.fromisoformat(item['timestamp'].replace('Z', '+00:00'))
            by_type.setdefault(item['type'], []).append(timestamp)
            severities.setdefault(item['type'], []).append(item['severity'])

        for idx, (event_type, timestamps) in enumerate(by_type.items()):
            ax.scatter(
                timestamps,
                [idx] * len(timestamps),
                s=100,
                color=[SEVERITY_COLORS.get(s, 'grey') for s in severities[event_type]],
            )

        ax.set_yticks(range(len(by_type)))
        ax.set_yticklabels([TYPE_LABELS.get(t, t) for t in by_type])
        ax.set_xlabel('Time')
        ax.set_title(title)
        ax.grid(True, alpha=0.3)
    else:
        ax.text(0.5, 0.5, 'No Events', ha='center', va='center', fontsize=16)
        ax.set_title(title)

    buffer = BytesIO()
    plt.savefig(buffer, format='png', bbox_inches='tight', dpi=100)
    plt.close(fig)
    buffer.seek(0)
    return buffer


def generate_integrity_report(report: dict[str, Any]) -> BytesIO:
    """
    Generate the PDF integrity report for one session
    """
    session = report['session']
    summary = report['summary']
    breakdown = report['event_breakdown']
    metadata = report['metadata']

    buffer = BytesIO()
    doc = SimpleDocTemplate(buffer, pagesize=letter,
                            rightMargin=72, leftMargin=72,
                            topMargin=72, bottomMargin=18)
    elements = []

    styles = getSampleStyleSheet()
    title_style = ParagraphStyle(
        'CustomTitle',
        parent=styles['Heading1'],
        fontSize=24,
        textColor=colors.HexColor('#2563eb'),
        spaceAfter=20,
        alignment=TA_CENTER
    )
    heading_style = ParagraphStyle(
        'CustomHeading',
        parent=styles['Heading2'],
        fontSize=16,
        textColor=colors.HexColor('#1f2937'),
        spaceAfter=12,
        spaceBefore=12
    )

    # Header
    elements.append(Paragraph("Proctoring Integrity Report", title_style))
    elements.append(Paragraph(f"Session ID: {session['id']}", styles['Normal']))
    elements.append(Paragraph(f"Generated on: {metadata['generated_at']}", styles['Normal']))
    elements.append(Spacer(1, 0.3*inch))

    # Session summary
    elements.append(Paragraph("Session Summary", heading_style))
    summary_rows = [
        ['Candidate Name', summary['candidate_name']],
        ['Session Duration', summary['duration']],
        ['Total Events', str(summary['total_events'])],
        ['Integrity Score', f"{summary['integrity_score']}%"],
        ['Assessment', summary['integrity_tier']],
        ['Status', summary['status'].capitalize()],
    ]
    summary_table = Table(summary_rows, colWidths=[2.5*inch, 3.5*inch])
    summary_table.setStyle(TableStyle([
        ('ALIGN', (0, 0), (-1, -1), 'LEFT'),
        ('FONTNAME', (0, 0), (0, -1), 'Helvetica-Bold'),
        ('FONTSIZE', (0, 0), (-1, -1), 11),
        ('TEXTCOLOR', (1, 3), (1, 3), score_color(summary['integrity_score'])),
        ('BACKGROUND', (0, 0), (-1, -1), colors.HexColor('#f9fafb')),
        ('BOX', (0, 0), (-1, -1), 1, colors.HexColor('#d0d7de')),
        ('GRID', (0, 0), (-1, -1), 0.5, colors.HexColor('#e5e7eb')),
        ('BOTTOMPADDING', (0, 0), (-1, -1), 8),
        ('TOPPADDING', (0, 0), (-1, -1), 8),
    ]))
    elements.append(summary_table)
    elements.append(Spacer(1, 0.3*inch))

    # Event analysis
    elements.append(Paragraph("Event Analysis", heading_style))
    type_rows = [['Event Type', 'Count']]
    for event_type, label in TYPE_LABELS.items():
        type_rows.append([label, str(breakdown['by_type'].get(event_type, 0))])
    type_table = Table(type_rows, colWidths=[3*inch, 1.5*inch])
    type_table.setStyle(TableStyle([
        ('BACKGROUND', (0, 0), (-1, 0), colors.grey),
        ('TEXTCOLOR', (0, 0), (-1, 0), colors.whitesmoke),
        ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
        ('ALIGN', (1, 0), (1, -1), 'CENTER'),
        ('GRID', (0, 0), (-1, -1), 0.5, colors.black),
    ]))
    elements.append(type_table)
    elements.append(Spacer(1, 0.2*inch))

    by_severity = breakdown['by_severity']
    for severity in ('high', 'medium', 'low'):
        elements.append(Paragraph(
            f"<b>{severity.capitalize()} Severity:</b> {by_severity.get(severity, 0)} events",
            styles['Normal'],
        ))

    labelled = {TYPE_LABELS[t]: c for t, c in breakdown['by_type'].items() if t in TYPE_LABELS}
    if sum(labelled.values()) > 0:
        elements.append(Spacer(1, 0.2*inch))
        elements.append(RLImage(create_pie_chart(labelled, "Event Distribution"), width=5*inch, height=3*inch))

    # Timeline
    elements.append(PageBreak())
    elements.append(Paragraph("Event Timeline", heading_style))
    timeline = report['timeline']
    if not timeline:
        elements.append(Paragraph("No events recorded during this session.", styles['Normal']))
    else:
        elements.append(RLImage(create_timeline_chart(timeline, "Event Timeline"), width=6.5*inch, height=3*inch))
        elements.append(Spacer(1, 0.2*inch))
        timeline_rows = [['Time', 'Type', 'Severity', 'Description']]
        for item in timeline:
            timeline_rows.append([
                item['timestamp'][11:19],
                item['type'].replace('_', ' ').upper(),
                item['severity'].capitalize(),
                Paragraph(escape(item['description']), styles['Normal']),
            ])
        timeline_table = Table(timeline_rows, colWidths=[0.9*inch, 1.5*inch, 0.8*inch, 3.3*inch], repeatRows=1)
        timeline_table.setStyle(TableStyle([
            ('BACKGROUND', (0, 0), (-1, 0), colors.grey),
            ('TEXTCOLOR', (0, 0), (-1, 0), colors.whitesmoke),
            ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
            ('FONTSIZE', (0, 0), (-1, -1), 9),
            ('VALIGN', (0, 0), (-1, -1), 'TOP'),
            ('GRID', (0, 0), (-1, -1), 0.5, colors.black),
        ]))
        elements.append(timeline_table)

    # Recommendations
    elements.append(Spacer(1, 0.3*inch))
    elements.append(Paragraph("Recommendations", heading_style))
    for index, recommendation in enumerate(report['recommendations'], 1):
        elements.append(Paragraph(f"<b>{index}.</b> {recommendation}", styles['Normal']))

    # Statistics
    elements.append(Spacer(1, 0.3*inch))
    elements.append(Paragraph("Statistical Analysis", heading_style))
    elements.append(Paragraph(f"<b>Events per Minute:</b> {metadata['events_per_minute']:.2f}", styles['Normal']))
    elements.append(Paragraph(f"<b>Start Time:</b> {session['start_time']}", styles['Normal']))
    if session.get('end_time'):
        elements.append(Paragraph(f"<b>End Time:</b> {session['end_time']}", styles['Normal']))

    doc.build(elements)
    buffer.seek(0)
    return buffer
