"""
PDF renderers (ReportLab) for quotes, invoices and hotel/tour vouchers.

Each renderer takes an already computed model and returns the PDF bytes;
no prices are derived here.
"""

from datetime import date, datetime
from io import BytesIO
from typing import Dict, List, Any, Optional
from xml.sax.saxutils import escape
import logging

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.pdfgen import canvas
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from quote_engine import QuoteCalculation, QuoteEngineError, PaxComposition
from quote_documents import (
    build_columns,
    date_range,
    format_amount,
    inclusion_lines,
    quote_notes,
    table_rows,
)
from invoice import INVOICE_DECLARATION, Invoice

logger = logging.getLogger(__name__)

BRAND_NAME = 'Q1 Travel Tours'
BRAND_TAGLINE = 'Your Premium Travel Partner'
NAVY = colors.Color(0, 51 / 255, 102 / 255)
GOLD = colors.Color(200 / 255, 161 / 255, 92 / 255)

VOUCHER_NOTES = (
    'Pickup time may vary by +/-30 minutes. Please be ready at the scheduled time.',
    'Drivers will wait maximum 5 minutes from arrival time at pickup location.',
    'Early check-out will attract full cancellation charges.',
    'Hotel reserves the right to charge security deposit for extras or damages.',
    'Force Majeure conditions do not apply - standard booking terms apply.',
    'Please carry valid ID proof during all tours and hotel check-in.',
)

DEFAULT_PICKUP = '09:00 AM'
DEFAULT_DROP = '05:00 PM'


class VoucherValidationError(QuoteEngineError):
    pass


def _grid_style() -> TableStyle:
    return TableStyle([
        ('BACKGROUND', (0, 0), (-1, 0), NAVY),
        ('TEXTCOLOR', (0, 0), (-1, 0), colors.white),
        ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
        ('FONTSIZE', (0, 0), (-1, -1), 8),
        ('GRID', (0, 0), (-1, -1), 0.5, colors.grey),
        ('VALIGN', (0, 0), (-1, -1), 'TOP'),
    ])


def _bullets(lines: List[str], style) -> List[Paragraph]:
    return [Paragraph(f"&bull; {escape(line)}", style) for line in lines]


# =====================================================
# QUOTE
# =====================================================

def render_quote_pdf(calc: QuoteCalculation, reference: str = '') -> bytes:
    buf = BytesIO()
    doc = SimpleDocTemplate(buf, pagesize=A4, title=f"Quote {reference}".strip())
    styles = getSampleStyleSheet()
    story: List[Any] = []

    draft = calc.draft
    story.append(Paragraph('Dubai Holiday Quote', styles['Title']))
    meta = []
    if reference:
        meta.append(f"Reference: {escape(reference)}")
    if draft.customer_name:
        meta.append(f"Guest: {escape(draft.customer_name)}")
    meta.append(f"Travel Dates: {date_range(draft)} ({calc.nights} nights)")
    meta.append(f"Pax: {draft.pax.summary()}")
    story.append(Paragraph('<br/>'.join(meta), styles['Normal']))
    story.append(Spacer(1, 12))

    columns = build_columns(calc)
    data = [[col.label for col in columns]] + table_rows(calc, columns)
    table = Table(data, repeatRows=1)
    table.setStyle(_grid_style())
    story.append(table)
    story.append(Spacer(1, 12))

    if calc.tour_lines:
        story.append(Paragraph('<b>Tours &amp; Activities</b>', styles['Normal']))
        story.extend(_bullets(
            [f"{t.name} ({t.type}) - AED {t.per_person_aed} per person" for t in calc.tour_lines],
            styles['Normal'],
        ))
        story.append(Spacer(1, 8))

    story.append(Paragraph('<b>Inclusions</b>', styles['Normal']))
    story.extend(_bullets(inclusion_lines(draft), styles['Normal']))

    notes = quote_notes(calc)
    if notes:
        story.append(Spacer(1, 8))
        story.extend(_bullets(notes, styles['Italic']))

    story.append(Spacer(1, 8))
    story.append(Paragraph(
        f"Prices are per person. USD converted at 1 USD = {format_amount(calc.exchange_rate)} AED.",
        styles['Italic'],
    ))

    doc.build(story)
    return buf.getvalue()


# =====================================================
# INVOICE
# =====================================================

def render_invoice_pdf(invoice: Invoice) -> bytes:
    buf = BytesIO()
    doc = SimpleDocTemplate(buf, pagesize=A4, title=f"Invoice {invoice.invoice_number}")
    styles = getSampleStyleSheet()
    story: List[Any] = []

    story.append(Paragraph('SALES INVOICE', styles['Title']))
    story.append(Paragraph(f"{BRAND_NAME} - {BRAND_TAGLINE}", styles['Normal']))
    story.append(Spacer(1, 12))

    details = [
        ['Invoice No.', invoice.invoice_number, 'Date', invoice.issue_date.strftime('%d/%m/%Y')],
        ['Quote Ref.', invoice.reference_number, 'Nights', str(invoice.nights)],
        ['Client', invoice.client_name or '-', 'Lead Pax', invoice.lead_pax_name],
    ]
    details_table = Table(details)
    details_table.setStyle(TableStyle([
        ('FONTSIZE', (0, 0), (-1, -1), 9),
        ('FONTNAME', (0, 0), (0, -1), 'Helvetica-Bold'),
        ('FONTNAME', (2, 0), (2, -1), 'Helvetica-Bold'),
    ]))
    story.append(details_table)
    story.append(Spacer(1, 12))

    data = [['Sr.', 'Service', 'Dates', 'Pax', 'Unit (USD)', 'Amount (USD)']]
    for line in invoice.lines:
        data.append([
            str(line.sr_no),
            Paragraph(escape(line.description), styles['BodyText']),
            line.dates,
            f"{line.pax:02d}",
            f"${line.unit_usd:.2f}",
            f"${line.amount_usd:.2f}",
        ])
    data.append(['', '', '', '', 'TOTAL', f"USD ${invoice.total_usd:.2f}"])
    lines_table = Table(data, repeatRows=1, colWidths=[25, 180, 110, 30, 70, 80])
    style = _grid_style()
    style.add('FONTNAME', (0, -1), (-1, -1), 'Helvetica-Bold')
    style.add('BACKGROUND', (0, -1), (-1, -1), colors.Color(240 / 255, 240 / 255, 240 / 255))
    lines_table.setStyle(style)
    story.append(lines_table)
    story.append(Spacer(1, 12))

    story.append(Paragraph('<b>Inclusions:</b>', styles['Normal']))
    story.extend(_bullets(list(invoice.inclusions), styles['Normal']))
    story.append(Spacer(1, 12))

    bank = invoice.bank_account
    story.append(Paragraph('<b>BANK DETAILS FOR PAYMENT:</b>', styles['Normal']))
    bank_lines = [
        ('Bank Name', bank.get('bank_name')),
        ('Account Name', bank.get('account_name')),
        ('Account Number', bank.get('account_number')),
        ('IBAN', bank.get('iban')),
        ('SWIFT Code', bank.get('swift_code')),
        ('Branch', bank.get('branch_name')),
        ('Country', bank.get('branch_country')),
        ('Bank Address', bank.get('bank_address')),
        ('Currency', bank.get('currency')),
    ]
    story.append(Paragraph(
        '<br/>'.join(f"{label}: {escape(str(value))}" for label, value in bank_lines if value),
        styles['Normal'],
    ))
    story.append(Spacer(1, 18))
    story.append(Paragraph(f"<b>Declaration:</b> {INVOICE_DECLARATION}", styles['Italic']))

    doc.build(story)
    return buf.getvalue()


# =====================================================
# VOUCHER
# =====================================================

def _ordinal_date(value: date) -> str:
    """5th March 2026"""
    day = value.day
    if 11 <= day % 100 <= 13:
        suffix = 'th'
    else:
        suffix = {1: 'st', 2: 'nd', 3: 'rd'}.get(day % 10, 'th')
    return f"{day}{suffix} {value.strftime('%B %Y')}"


def _as_date(value: Any) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not value:
        return None
    return date.fromisoformat(str(value)[:10])


def _fmt_time(value: Any, default: str) -> str:
    if not value:
        return default
    text = str(value)
    try:
        return datetime.strptime(text[:5], '%H:%M').strftime('%I:%M %p')
    except ValueError:
        return text


def build_voucher_model(
    quote: Dict[str, Any],
    confirmation_number: str,
    tourism_dirham_paid: bool,
    itinerary_items: List[Dict[str, Any]],
    tours_by_id: Dict[str, Dict[str, Any]],
    hotel_name: str,
    lead_pax_name: str = '',
) -> Dict[str, Any]:
    if not (confirmation_number or '').strip():
        raise VoucherValidationError('Please enter the hotel confirmation number')

    check_in = _as_date(quote.get('travel_dates_from'))
    check_out = _as_date(quote.get('travel_dates_to'))
    pax = PaxComposition(
        adults=int(quote.get('adults') or 0),
        cwb=int(quote.get('cwb') or 0),
        cnb=int(quote.get('cnb') or 0),
        infants=int(quote.get('infants') or 0),
    )

    tours = []
    for item in sorted(itinerary_items, key=lambda i: (str(i.get('tour_date')), str(i.get('start_time') or ''))):
        tour = tours_by_id.get(str(item.get('tour_id')))
        if not tour:
            continue
        tour_date = _as_date(item.get('tour_date'))
        tours.append({
            'date': tour_date.strftime('%d %b') if tour_date else '-',
            'name': tour.get('name') or '-',
            'transfer': 'SIC' if tour.get('transfer_included') else 'Private',
            'pickup': _fmt_time(item.get('start_time'), DEFAULT_PICKUP),
            'drop': _fmt_time(item.get('end_time'), DEFAULT_DROP),
        })

    return {
        'reference': quote.get('reference_number') or '-',
        'confirmation_number': confirmation_number.strip(),
        'lead_pax_name': (lead_pax_name or quote.get('client_name') or '-').strip(),
        'hotel_name': hotel_name or '-',
        'check_in': _ordinal_date(check_in) if check_in else '-',
        'check_out': _ordinal_date(check_out) if check_out else '-',
        'nights': (check_out - check_in).days if check_in and check_out else 0,
        'pax': pax.summary(),
        'tourism_dirham': 'Paid' if tourism_dirham_paid else 'Payable directly at hotel',
        'tours': tours,
        'notes': list(VOUCHER_NOTES),
    }


def render_voucher_pdf(model: Dict[str, Any]) -> bytes:
    buf = BytesIO()
    c = canvas.Canvas(buf, pagesize=A4)
    width, height = A4

    x = 40
    line_h = 14

    # Header band
    c.setFillColor(NAVY)
    c.rect(0, height - 80, width, 80, stroke=0, fill=1)
    c.setFillColor(colors.white)
    c.setFont('Helvetica-Bold', 20)
    c.drawCentredString(width / 2, height - 40, 'Hotel / Tour Voucher')
    c.setFont('Helvetica', 9)
    c.drawCentredString(width / 2, height - 60, f"{BRAND_NAME} - {BRAND_TAGLINE}")

    # Reference band
    y = height - 110
    c.setFillColor(GOLD)
    c.rect(30, y - 6, width - 60, 20, stroke=0, fill=1)
    c.setFillColor(colors.white)
    c.setFont('Helvetica-Bold', 11)
    c.drawString(x, y, f"Booking Ref: {model['reference']}")
    c.drawRightString(width - x, y, f"Hotel Conf. No: {model['confirmation_number']}")
    c.setFillColor(colors.black)
    y -= 2 * line_h

    c.setFont('Helvetica-Bold', 11)
    c.drawString(x, y, 'GUEST & STAY')
    y -= line_h
    c.setFont('Helvetica', 9)
    for text in (
        f"Lead Guest: {model['lead_pax_name']}",
        f"Pax: {model['pax']}",
        f"Hotel: {model['hotel_name']}",
        f"CHECK IN (Standard time: 14:00 hrs): {model['check_in']}",
        f"CHECK OUT (Standard time: 12:00 noon): {model['check_out']}",
        f"Nights: {model['nights']}",
        f"Tourism Dirham: {model['tourism_dirham']}",
    ):
        c.drawString(x, y, text)
        y -= line_h
    y -= line_h

    c.setFont('Helvetica-Bold', 11)
    c.drawString(x, y, 'TOURS')
    y -= line_h
    c.setFont('Helvetica-Bold', 8)
    for col_x, label in ((x, 'DATE'), (x + 50, 'TOUR'), (x + 300, 'TRANSFER'), (x + 380, 'PICK-UP'), (x + 450, 'DROP-OFF')):
        c.drawString(col_x, y, label)
    y -= line_h
    c.setFont('Helvetica', 8)
    if model['tours']:
        for tour in model['tours']:
            if y < 120:
                c.showPage()
                y = height - 50
                c.setFont('Helvetica', 8)
            c.drawString(x, y, tour['date'])
            c.drawString(x + 50, y, tour['name'][:55])
            c.drawString(x + 300, y, tour['transfer'])
            c.drawString(x + 380, y, tour['pickup'])
            c.drawString(x + 450, y, tour['drop'])
            y -= line_h
    else:
        c.drawString(x + 50, y, 'No tours scheduled')
        y -= line_h

    c.setFont('Helvetica-Oblique', 7)
    c.setFillColor(colors.grey)
    c.drawString(x, y, '* Please carry this voucher and theme park tickets during tours')
    c.setFillColor(colors.black)
    y -= 2 * line_h

    if y < 160:
        c.showPage()
        y = height - 50
    c.setFont('Helvetica-Bold', 10)
    c.setFillColor(NAVY)
    c.drawString(x, y, 'IMPORTANT INFORMATION')
    c.setFillColor(colors.black)
    y -= line_h
    c.setFont('Helvetica', 7)
    for note in model['notes']:
        c.drawString(x, y, f"- {note}")
        y -= 11

    c.setFont('Helvetica-Oblique', 8)
    c.drawString(x, 40, 'This voucher was generated electronically.')
    c.showPage()
    c.save()

    return buf.getvalue()
