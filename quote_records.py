"""
Quote persistence payloads.

A saved quote keeps its draft and calculation as a structured ``quote_data``
JSON document next to the rendered ``formatted_quote`` HTML. Both come from
the same calculation, and editing a quote rebuilds the draft from
``quote_data`` and recalculates, so they cannot drift apart.

Quotes saved by the old front end carried their JSON inside the free-text
``notes`` column after a marker line. Those are still readable here.
"""

from datetime import date
from typing import Dict, List, Any, Optional
import json
import logging
import random

from quote_engine import QuoteCalculation, QuoteDraft, draft_from_payload
from quote_documents import render_quote_html

logger = logging.getLogger(__name__)

LEGACY_NOTES_MARKER = '---QUOTE_DATA---'

QUOTE_STATUSES = ('draft', 'sent', 'confirmed', 'cancelled')
DEFAULT_CURRENCY = 'AED'


def generate_reference_number(today: Optional[date] = None, rng: Optional[random.Random] = None) -> str:
    """QT-YYYYMMDD-NNNN"""
    today = today or date.today()
    rng = rng or random
    return f"QT-{today.strftime('%Y%m%d')}-{rng.randint(0, 9999):04d}"


def quote_total_aed(calc: QuoteCalculation) -> int:
    """Party total for the first hotel option at its primary occupancy."""
    if not calc.options:
        return 0
    option = calc.options[0]
    pax = calc.draft.pax
    total = option.primary_adult.aed * pax.adults
    if option.cwb is not None:
        total += option.cwb.aed * pax.cwb
    if option.cnb is not None:
        total += option.cnb.aed * pax.cnb
    return total


def build_quote_data(calc: QuoteCalculation) -> Dict[str, Any]:
    return {
        'draft': calc.draft.to_dict(),
        'calculation': calc.to_dict(),
    }


def build_quote_record(
    calc: QuoteCalculation,
    reference_number: str,
    status: str = 'draft',
) -> Dict[str, Any]:
    """Column values for a ``quotes`` row."""
    draft = calc.draft
    pax = draft.pax
    return {
        'reference_number': reference_number,
        'client_name': draft.customer_name,
        'client_email': draft.customer_email or None,
        'travel_dates_from': draft.stay.check_in.isoformat(),
        'travel_dates_to': draft.stay.check_out.isoformat(),
        'adults': pax.adults,
        'cwb': pax.cwb,
        'cnb': pax.cnb,
        'infants': pax.infants,
        'total_amount': quote_total_aed(calc),
        'currency': DEFAULT_CURRENCY,
        'status': status,
        'quote_data': json.dumps(build_quote_data(calc)),
        'formatted_quote': render_quote_html(calc),
    }


def load_json_dict(value: Any) -> Dict[str, Any]:
    """quote_data may come back from psycopg2 as a dict (jsonb) or a str."""
    if isinstance(value, dict):
        return value
    if not value:
        return {}
    try:
        parsed = json.loads(value)
    except (TypeError, ValueError) as e:
        logger.error(f"Could not parse stored quote data: {e}")
        return {}
    return parsed if isinstance(parsed, dict) else {}


def draft_from_quote_data(quote_data: Any) -> QuoteDraft:
    """Rebuild the editable draft of a saved quote."""
    return draft_from_payload(load_json_dict(quote_data).get('draft') or {})


# =====================================================
# LEGACY NOTES PAYLOAD
# =====================================================

def parse_legacy_notes(notes: Optional[str]) -> Dict[str, Any]:
    """JSON after the marker in a legacy notes field, or {} if absent/broken."""
    if not notes or LEGACY_NOTES_MARKER not in notes:
        return {}
    payload = notes.split(LEGACY_NOTES_MARKER, 1)[1].strip()
    try:
        parsed = json.loads(payload)
    except ValueError as e:
        logger.error(f"Error parsing legacy quote notes: {e}")
        return {}
    return parsed if isinstance(parsed, dict) else {}


def legacy_notes_text(notes: Optional[str]) -> str:
    """Operator-written part of a legacy notes field."""
    if not notes:
        return ''
    return notes.split(LEGACY_NOTES_MARKER, 1)[0].strip()


def hotel_options_from_record(record: Dict[str, Any]) -> List[Dict[str, Any]]:
    """
    Hotel options of a saved quote, newest storage first:
    quote_data draft, legacy notes payload, legacy formatted_quote JSON,
    and finally the single selected_hotel of very old quotes.
    """
    draft = load_json_dict(record.get('quote_data')).get('draft') or {}
    if draft.get('hotels'):
        return list(draft['hotels'])

    legacy = parse_legacy_notes(record.get('notes'))
    options = legacy.get('hotelOptions')
    if isinstance(options, list) and options:
        return [_legacy_hotel(o) for o in options]

    formatted = record.get('formatted_quote')
    if formatted and str(formatted).lstrip().startswith('{'):
        options = load_json_dict(formatted).get('hotelOptions')
        if isinstance(options, list) and options:
            return [_legacy_hotel(o) for o in options]

    selected = record.get('selected_hotel') or legacy.get('selectedHotel')
    if isinstance(selected, dict) and selected:
        return [_legacy_hotel({'hotel': selected})]
    return []


def _legacy_hotel(option: Dict[str, Any]) -> Dict[str, Any]:
    hotel = option.get('hotel') if isinstance(option.get('hotel'), dict) else option
    return {
        'id': str(hotel.get('id') or ''),
        'name': hotel.get('name') or 'Hotel',
        'rate': hotel.get('baseRate', hotel.get('rate')),
        'extra_bed_rate': hotel.get('extraBedRate', hotel.get('extra_bed_rate')),
    }
