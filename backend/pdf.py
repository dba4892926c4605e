from reportlab.lib.pagesizes import letter
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.platypus import (
    SimpleDocTemplate, Paragraph, Spacer, Table, TableStyle, HRFlowable
)
from reportlab.lib import colors
from reportlab.lib.units import inch
from xml.sax.saxutils import escape
import io


def _minutes(total):
    hours, minutes = divmod(int(total or 0), 60)
    if hours and minutes:
        return f"{hours}h {minutes}m"
    if hours:
        return f"{hours}h"
    return f"{minutes}m"


def generate_itinerary_pdf(itinerary):
    """Render an ``Itinerary`` to PDF bytes."""
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(buffer, pagesize=letter)

    styles = getSampleStyleSheet()
    title_style = ParagraphStyle(
        name='TitleStyle',
        parent=styles['Title'],
        fontSize=26,
        textColor=colors.HexColor("#2d4a6b"),
        alignment=1,
        spaceAfter=20
    )

    header_style = ParagraphStyle(
        name='HeaderStyle',
        parent=styles['Heading2'],
        textColor=colors.HexColor("#4a7bab"),
        fontSize=18,
        spaceAfter=10
    )

    normal = styles['BodyText']

    elements = []

    # -------------------------------
    # HEADER BANNER
    # -------------------------------
    banner = Table(
        [["LocalMate Itinerary"]],
        colWidths=[7.5 * inch]
    )

    banner.setStyle(TableStyle([
        ('BACKGROUND', (0,0), (-1,-1), colors.HexColor("#8fb3d9")),
        ('TEXTCOLOR', (0,0), (-1,-1), colors.white),
        ('ALIGN', (0,0), (-1,-1), 'CENTER'),
        ('FONTSIZE', (0,0), (-1,-1), 20),
        ('BOTTOMPADDING', (0,0), (-1,-1), 20),
        ('TOPPADDING', (0,0), (-1,-1), 20),
    ]))

    elements.append(banner)
    elements.append(Spacer(1, 18))

    elements.append(Paragraph(escape(itinerary.title or "Itinerary"), title_style))
    if itinerary.description:
        elements.append(Paragraph(escape(itinerary.description), normal))
    elements.append(Spacer(1, 10))

    elements.append(HRFlowable(width="100%", color=colors.HexColor("#4a7bab"), thickness=2))
    elements.append(Spacer(1, 20))

    # -------------------------------
    # OVERVIEW
    # -------------------------------
    elements.append(Paragraph("Overview", header_style))

    place = ", ".join(p for p in (itinerary.city, itinerary.country) if p) or "N/A"
    summary_html = f"""
        <b>Where:</b> {escape(place)}<br/>
        <b>Type:</b> {escape(itinerary.type)}<br/>
        <b>Mood:</b> {escape(itinerary.mood)}<br/>
        <b>Purpose:</b> {escape(itinerary.purpose)}<br/>
        <b>Total Duration:</b> {_minutes(itinerary.total_duration)}<br/>
        <b>Estimated Cost:</b> ${itinerary.estimated_cost or 0}<br/>
        <b>Progress:</b> {itinerary.completion_percentage}% complete<br/>
    """
    if itinerary.tags:
        summary_html += f"<b>Tags:</b> {escape(', '.join(itinerary.tags))}<br/>"
    if itinerary.ai_generated and itinerary.ai_prompt:
        summary_html += f"<b>Generated from:</b> <i>{escape(itinerary.ai_prompt)}</i><br/>"

    elements.append(Paragraph(summary_html, normal))
    elements.append(Spacer(1, 20))

    elements.append(HRFlowable(width="100%", color=colors.HexColor("#4a7bab"), thickness=1))
    elements.append(Spacer(1, 10))

    # -------------------------------
    # STOPS TABLE
    # -------------------------------
    elements.append(Paragraph("Your Stops", header_style))

    table_data = [["#", "Place", "Category", "Time", "Visited"]]
    for entry in sorted(itinerary.places, key=lambda p: p.order):
        name = entry.name if entry.ref.resolved else f"{entry.name} (suggested)"
        table_data.append([
            str(entry.order),
            Paragraph(escape(name or "N/A"), normal),
            Paragraph(escape(entry.category or "—"), normal),
            _minutes(entry.estimated_duration),
            "Yes" if entry.is_visited else "No",
        ])

    table = Table(table_data, colWidths=[30, 190, 130, 70, 60])

    table.setStyle(TableStyle([
        ('BACKGROUND', (0,0), (-1,0), colors.HexColor("#2d4a6b")),
        ('TEXTCOLOR', (0,0), (-1,0), colors.white),
        ('ALIGN', (0,0), (-1,-1), 'CENTER'),
        ('VALIGN', (0,0), (-1,-1), 'MIDDLE'),
        ('FONTNAME', (0,0), (-1,0), 'Helvetica-Bold'),
        ('GRID', (0,0), (-1,-1), 0.5, colors.grey),
        ('ROWBACKGROUNDS', (0,1), (-1,-1), [colors.whitesmoke, colors.HexColor("#e8f0f8")]),
    ]))

    elements.append(table)
    elements.append(Spacer(1, 20))

    notes = [e for e in itinerary.places if e.notes]
    if notes:
        elements.append(Paragraph("Notes", header_style))
        notes_html = "<br/>".join(
            f"• <b>{escape(e.name)}:</b> {escape(e.notes)}" for e in notes
        )
        elements.append(Paragraph(notes_html, normal))
        elements.append(Spacer(1, 20))

    doc.build(elements)
    return buffer.getvalue()
