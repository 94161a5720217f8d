"""
Quote document assembler.

Renders a QuoteCalculation into:
  - an HTML quote block (screen preview, PDF source, stored formatted_quote)
  - a standalone print page (HTML + CSS + inline print/close script)
  - a plain-text breakdown for the clipboard

The price table's columns depend on the quote (active occupancies, apartment
mode, child counts). They are built once by build_columns() and every
renderer, the PDF one included, walks the same list.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, List, Optional, Union
import logging

from jinja2 import Environment
from markupsafe import Markup

from quote_engine import (
    APARTMENT,
    OCCUPANCY_ORDER,
    HotelOptionCost,
    Money,
    QuoteCalculation,
    QuoteDraft,
    ceil_amount,
)

logger = logging.getLogger(__name__)

OCCUPANCY_LABELS = {
    'single': 'Single',
    'double': 'Double',
    'triple': 'Triple',
}

STANDARD_INCLUSIONS_HEAD = ('Daily Breakfast',)
STANDARD_INCLUSIONS_TAIL = ('All transfers on SIC basis', 'All taxes except Tourism Dirham')


# =====================================================
# COLUMN DESCRIPTORS
# =====================================================

@dataclass(frozen=True)
class Column:
    key: str
    label: str
    cell: Callable[[HotelOptionCost], Union[str, Money, None]]


def _adult_cell(occupancy: str) -> Callable[[HotelOptionCost], Optional[Money]]:
    return lambda option: option.adult.get(occupancy)


def build_columns(calc: QuoteCalculation) -> List[Column]:
    """Ordered price-table columns for this calculation."""
    pax = calc.draft.pax
    columns = [Column('hotel', 'Hotel', lambda option: option.hotel.name)]

    if calc.is_apartment:
        columns.append(Column(
            APARTMENT,
            f"Apartment {calc.apartment.apartment_type} (per adult)",
            _adult_cell(APARTMENT),
        ))
    else:
        for occupancy in OCCUPANCY_ORDER:
            if occupancy in calc.draft.occupancy.active_types():
                columns.append(Column(
                    occupancy,
                    f"{OCCUPANCY_LABELS[occupancy]} (per adult)",
                    _adult_cell(occupancy),
                ))

    if pax.cwb > 0:
        columns.append(Column('cwb', 'Child with Bed', lambda option: option.cwb))
    if pax.cnb > 0:
        columns.append(Column('cnb', 'Child no Bed', lambda option: option.cnb))

    return columns


def format_money(value: Money) -> str:
    return f"AED {value.aed} / USD {value.usd}"


def format_cell(value: Union[str, Money, None]) -> str:
    if value is None:
        return '-'
    if isinstance(value, Money):
        return format_money(value)
    return str(value)


def table_rows(calc: QuoteCalculation, columns: List[Column]) -> List[List[str]]:
    return [[format_cell(col.cell(option)) for col in columns] for option in calc.options]


# =====================================================
# SHARED TEXT PIECES
# =====================================================

def format_amount(value: Decimal) -> str:
    """500 -> '500', 512.50 -> '512.5'"""
    return format(Decimal(value).normalize(), 'f')


def format_date(value) -> str:
    return value.strftime('%d %b %Y')


def date_range(draft: QuoteDraft) -> str:
    return f"{format_date(draft.stay.check_in)} - {format_date(draft.stay.check_out)}"


def nights_label(nights: int) -> str:
    return f"{nights:02d} Night{'s' if nights != 1 else ''}"


def inclusion_lines(draft: QuoteDraft) -> List[str]:
    lines = list(STANDARD_INCLUSIONS_HEAD)
    lines.extend(t.name for t in draft.tours)
    if draft.add_ons.include_visa:
        lines.append('UAE Tourist Visa')
    if draft.add_ons.include_airport_transfer:
        lines.append('Return Airport Transfers')
    lines.extend(draft.inclusions)
    lines.extend(STANDARD_INCLUSIONS_TAIL)
    return lines


def quote_notes(calc: QuoteCalculation) -> List[str]:
    notes = []
    pax = calc.draft.pax
    if calc.special_double:
        notes.append('Double rooms are shared by one adult and one child; the room rate is split equally.')
    if calc.apartment and pax.cwb:
        split = calc.apartment
        notes.append(
            f"{split.cwb_without_extra_bed} child(ren) with bed within apartment capacity, "
            f"{split.cwb_with_extra_bed} on a charged extra bed."
        )
    if calc.infant_visa_usd:
        notes.append(f"Infant visa: USD {calc.infant_visa_usd} per infant (visa only).")
    notes.extend(calc.warnings)
    return notes


# =====================================================
# HTML
# =====================================================

_env = Environment(autoescape=True, trim_blocks=True, lstrip_blocks=True)

QUOTE_TEMPLATE = _env.from_string("""\
<div class="quote">
  <h2 class="quote-title">Dubai Holiday Quote</h2>
  <table class="quote-meta">
{% if draft.customer_name %}
    <tr><th>Guest</th><td>{{ draft.customer_name }}</td></tr>
{% endif %}
    <tr><th>Travel Dates</th><td>{{ dates }}</td></tr>
    <tr><th>Nights</th><td>{{ nights }}</td></tr>
    <tr><th>Pax</th><td>{{ pax }}</td></tr>
  </table>
  <table class="quote-prices">
    <thead>
      <tr>
{% for col in columns %}
        <th class="col-{{ col.key }}">{{ col.label }}</th>
{% endfor %}
      </tr>
    </thead>
    <tbody>
{% for row in rows %}
      <tr>
{% for cell in row %}
        <td>{{ cell }}</td>
{% endfor %}
      </tr>
{% endfor %}
    </tbody>
  </table>
{% if tours %}
  <h3>Tours &amp; Activities</h3>
  <ul class="quote-tours">
{% for tour in tours %}
    <li>{{ tour.name }} ({{ tour.type }}) - AED {{ tour.per_person_aed }} per person</li>
{% endfor %}
  </ul>
{% endif %}
  <h3>Inclusions</h3>
  <ul class="quote-inclusions">
{% for line in inclusions %}
    <li>{{ line }}</li>
{% endfor %}
  </ul>
{% if notes %}
  <ul class="quote-notes">
{% for note in notes %}
    <li>{{ note }}</li>
{% endfor %}
  </ul>
{% endif %}
  <p class="quote-footnote">Prices are per person. USD converted at 1 USD = {{ exchange_rate }} AED.</p>
</div>
""")

PRINT_TEMPLATE = _env.from_string("""\
<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<title>Quote {{ reference }}</title>
<style>
  body { font-family: Arial, Helvetica, sans-serif; color: #1f2937; margin: 32px; }
  .quote-title { color: #003366; border-bottom: 3px solid #c8a15c; padding-bottom: 6px; }
  table { border-collapse: collapse; margin: 12px 0; }
  .quote-meta th { text-align: left; padding: 2px 16px 2px 0; color: #6b7280; }
  .quote-prices th, .quote-prices td { border: 1px solid #d1d5db; padding: 6px 10px; }
  .quote-prices th { background: #003366; color: #fff; }
  .quote-notes, .quote-footnote { font-size: 12px; color: #6b7280; }
  .actions { margin-bottom: 16px; }
  .actions button { padding: 6px 14px; margin-right: 8px; }
  @media print { .no-print { display: none; } }
</style>
</head>
<body>
<div class="actions no-print">
  <button type="button" onclick="window.print()">Print</button>
  <button type="button" onclick="window.close()">Close</button>
</div>
{% if reference %}
<p class="reference">Reference: {{ reference }}</p>
{% endif %}
{{ quote_html }}
<script>
  window.addEventListener('load', function () { window.focus(); });
</script>
</body>
</html>
""")


def render_quote_html(calc: QuoteCalculation) -> str:
    columns = build_columns(calc)
    draft = calc.draft
    return QUOTE_TEMPLATE.render(
        draft=draft,
        dates=date_range(draft),
        nights=calc.nights,
        pax=draft.pax.summary(),
        columns=columns,
        rows=table_rows(calc, columns),
        tours=calc.tour_lines,
        inclusions=inclusion_lines(draft),
        notes=quote_notes(calc),
        exchange_rate=format_amount(calc.exchange_rate),
    )


def render_print_page(quote_html: str, reference: str = '') -> str:
    """Full page for a new print window around an already rendered quote block."""
    return PRINT_TEMPLATE.render(quote_html=Markup(quote_html), reference=reference)


# =====================================================
# PLAIN TEXT BREAKDOWN
# =====================================================

def render_option_text(calc: QuoteCalculation, option: HotelOptionCost) -> str:
    draft = calc.draft
    pax = draft.pax
    hotel = option.hotel

    lines = [
        date_range(draft),
        nights_label(calc.nights),
        pax.summary(),
    ]

    hotel_line = f"{hotel.name} - {format_amount(hotel.rate)} sell"
    if option.cwb_needs_extra_bed:
        hotel_line += f" | {format_amount(hotel.extra_bed_rate)} EB"
    lines.append(hotel_line)

    for tour in calc.tour_lines:
        lines.append(f"{tour.name} - {tour.per_person_aed}")

    if draft.add_ons.include_visa:
        if pax.children:
            lines.append(f"Visa - {calc.visa_adult}/{calc.visa_child}")
        else:
            lines.append(f"Visa - {calc.visa_adult}")

    if draft.add_ons.include_airport_transfer:
        lines.append(f"Airport Transfer - {ceil_amount(calc.airport_transfer_per_adult)}")

    total = f"Total - {option.primary_adult.aed}"
    child = option.child_total
    if child is not None:
        total += f"/{child.aed}"
    lines.append(total)

    return '\n'.join(lines)


def render_text_breakdown(calc: QuoteCalculation) -> str:
    """One block per hotel option, separated by a blank line."""
    return '\n\n'.join(render_option_text(calc, option) for option in calc.options)
