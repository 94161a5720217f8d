"""
Sales invoice builder for a saved quote.

The operator picks one of the quote's hotel options, a bank account, the lead
passenger and how the party is distributed across single/double/triple rooms.
Amounts are in USD at INVOICE_EXCHANGE_RATE, rounded half-up to cents.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Any, Optional, Tuple
import math
import logging

from quote_engine import (
    INVOICE_EXCHANGE_RATE,
    QuoteEngineError,
    to_decimal,
    to_int,
)
from quote_documents import STANDARD_INCLUSIONS_HEAD, STANDARD_INCLUSIONS_TAIL
from quote_records import load_json_dict, hotel_options_from_record

logger = logging.getLogger(__name__)

CENT = Decimal('0.01')

# (key, label, occupants per room)
INVOICE_OCCUPANCIES = (
    ('single', 'Single', 1),
    ('double', 'Double', 2),
    ('triple', 'Triple', 3),
)

DEFAULT_EXTRA_BED_RATE = Decimal('100')

INVOICE_DECLARATION = (
    'We declare that this invoice shows the actual price of the services described '
    'and that all particulars are true and correct.'
)


class InvoiceValidationError(QuoteEngineError):
    pass


@dataclass(frozen=True)
class InvoiceLine:
    sr_no: int
    description: str
    dates: str
    pax: int
    unit_usd: Decimal
    amount_usd: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            'sr_no': self.sr_no,
            'description': self.description,
            'dates': self.dates,
            'pax': self.pax,
            'unit_usd': float(self.unit_usd),
            'amount_usd': float(self.amount_usd),
        }


@dataclass(frozen=True)
class Invoice:
    invoice_number: str
    issue_date: date
    reference_number: str
    client_name: str
    lead_pax_name: str
    travel_dates_from: date
    travel_dates_to: date
    nights: int
    hotel_name: str
    lines: Tuple[InvoiceLine, ...]
    inclusions: Tuple[str, ...]
    total_usd: Decimal
    bank_account: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'invoice_number': self.invoice_number,
            'issue_date': self.issue_date.isoformat(),
            'reference_number': self.reference_number,
            'client_name': self.client_name,
            'lead_pax_name': self.lead_pax_name,
            'travel_dates_from': self.travel_dates_from.isoformat(),
            'travel_dates_to': self.travel_dates_to.isoformat(),
            'nights': self.nights,
            'hotel_name': self.hotel_name,
            'lines': [line.to_dict() for line in self.lines],
            'inclusions': list(self.inclusions),
            'total_usd': float(self.total_usd),
        }


def _to_cents(value: Decimal) -> Decimal:
    return value.quantize(CENT, ROUND_HALF_UP)


def _as_date(value: Any) -> date:
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def invoice_number_for(reference_number: str, issue_date: date) -> str:
    return f"{issue_date.strftime('%Y%m%d')}-{reference_number}"


def parse_distribution(data: Optional[Dict[str, Any]]) -> Dict[str, Dict[str, int]]:
    """{'single': {'adults': 1, 'cwb': 0, 'cnb': 0}, ...} with missing counts as 0."""
    data = data or {}
    distribution = {}
    for key, _label, _occupants in INVOICE_OCCUPANCIES:
        room = data.get(key) or {}
        distribution[key] = {
            field: max(0, to_int(room.get(field), f"{key} {field}"))
            for field in ('adults', 'cwb', 'cnb')
        }
    return distribution


def build_invoice(
    quote: Dict[str, Any],
    hotel_option_id: str,
    bank_account: Optional[Dict[str, Any]],
    lead_pax_name: str,
    distribution: Dict[str, Dict[str, int]],
    issue_date: Optional[date] = None,
) -> Invoice:
    if not bank_account or not hotel_option_id or not (lead_pax_name or '').strip():
        raise InvoiceValidationError(
            'Please fill in all required fields: bank account, hotel option, and lead passenger name'
        )

    distributed = sum(
        room['adults'] + room['cwb'] + room['cnb'] for room in distribution.values()
    )
    if distributed == 0:
        raise InvoiceValidationError('Please specify PAX distribution across occupancy types')

    hotel = next(
        (h for h in hotel_options_from_record(quote) if str(h.get('id')) == str(hotel_option_id)),
        None,
    )
    if hotel is None:
        raise InvoiceValidationError('Selected hotel option not found')

    issue_date = issue_date or date.today()
    check_in = _as_date(quote['travel_dates_from'])
    check_out = _as_date(quote['travel_dates_to'])
    nights = (check_out - check_in).days
    dates = f"{check_in.strftime('%d/%m/%Y')} - {check_out.strftime('%d/%m/%Y')}"

    rate = to_decimal(hotel.get('rate'), 'Hotel rate', allow_empty=True) or Decimal('0')
    extra_bed_rate = (
        to_decimal(hotel.get('extra_bed_rate'), 'Extra bed rate', allow_empty=True)
        or DEFAULT_EXTRA_BED_RATE
    )

    lines: List[InvoiceLine] = []
    for key, label, occupants in INVOICE_OCCUPANCIES:
        room = distribution[key]
        if room['adults'] <= 0:
            continue
        rooms = math.ceil(room['adults'] / occupants)
        aed = (rooms * rate + room['cwb'] * extra_bed_rate) * nights
        amount = _to_cents(aed / INVOICE_EXCHANGE_RATE)
        lines.append(InvoiceLine(
            sr_no=len(lines) + 1,
            description=f"{hotel['name']} ({label} Occupancy)",
            dates=dates,
            pax=room['adults'],
            unit_usd=amount,
            amount_usd=amount,
        ))

    draft = load_json_dict(quote.get('quote_data')).get('draft') or {}
    for tour in draft.get('tours') or []:
        cost = to_decimal(tour.get('cost_per_person'), 'Tour cost', allow_empty=True) or Decimal('0')
        lines.append(InvoiceLine(
            sr_no=len(lines) + 1,
            description=f"Tour: {tour.get('name')}",
            dates='-',
            pax=distributed,
            unit_usd=_to_cents(cost / INVOICE_EXCHANGE_RATE),
            amount_usd=_to_cents(cost * distributed / INVOICE_EXCHANGE_RATE),
        ))

    inclusions = list(STANDARD_INCLUSIONS_HEAD)
    inclusions.extend(t.get('name') for t in draft.get('tours') or [] if t.get('name'))
    inclusions.extend(draft.get('inclusions') or [])
    inclusions.extend(STANDARD_INCLUSIONS_TAIL)

    total = sum((line.amount_usd for line in lines), Decimal('0'))
    invoice_number = invoice_number_for(quote['reference_number'], issue_date)

    logger.info(
        f"Invoice {invoice_number}: hotel={hotel['name']}, pax={distributed}, "
        f"lines={len(lines)}, total_usd={total}"
    )

    return Invoice(
        invoice_number=invoice_number,
        issue_date=issue_date,
        reference_number=quote['reference_number'],
        client_name=quote.get('client_name') or '',
        lead_pax_name=lead_pax_name.strip(),
        travel_dates_from=check_in,
        travel_dates_to=check_out,
        nights=nights,
        hotel_name=hotel['name'],
        lines=tuple(lines),
        inclusions=tuple(inclusions),
        total_usd=total,
        bank_account=dict(bank_account),
    )
