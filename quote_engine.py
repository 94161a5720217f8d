"""
Dubai Quote Pricing Engine
==========================
Core quote calculation logic:
  - Pax / occupancy normalization (single, double, triple, apartment)
  - Special double occupancy (half-room adult/child split)
  - Apartment capacity split (shared capacity vs. charged extra bed)
  - Hotel, tour, visa and airport transfer cost derivation
  - AED -> USD conversion, ceiling-rounded at every stage

This is the SINGLE SOURCE OF TRUTH for quote prices.
The HTTP layer and the document renderers read a QuoteCalculation;
they never compute prices themselves.

Rounding:
  Every per-person AED total is ceiling-rounded to a whole dirham, and the
  USD figure is the ceiling of that already-rounded AED total divided by the
  exchange rate. Historical quotes were produced this way, so the compounding
  upward bias is kept as-is.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, ROUND_CEILING, InvalidOperation
from typing import Dict, List, Any, Optional, Tuple
import logging

logger = logging.getLogger(__name__)


# =====================================================
# CONSTANTS
# =====================================================

# AED per USD. The quote calculator and the invoice builder were priced with
# different constants; both are kept so stored quotes and invoices reproduce.
QUOTE_EXCHANGE_RATE = Decimal('3.65')
INVOICE_EXCHANGE_RATE = Decimal('3.67')

VISA_ADULT_AED = Decimal('310')
VISA_CHILD_AED = Decimal('73')
VISA_INFANT_USD = 20

# (min_pax, max_pax, total AED) on total pax, infants included
AIRPORT_TRANSFER_TIERS = (
    (1, 5, Decimal('250')),
    (6, 10, Decimal('500')),
    (11, 17, Decimal('1000')),
)

OCCUPANCY_ORDER = ('single', 'double', 'triple')
OCCUPANCY_DIVISORS = {'single': 1, 'double': 2, 'triple': 3}

# Occupancy used for the one-line "Total" of a text breakdown
PRIMARY_OCCUPANCY_ORDER = ('double', 'single', 'triple')

APARTMENT = 'apartment'

APARTMENT_CAPACITY = {
    '01BR': {'adult_cap': 2, 'cnb_cap': 1, 'max_cwb': 1},
    '02BR': {'adult_cap': 4, 'cnb_cap': 2, 'max_cwb': 2},
    '03BR': {'adult_cap': 6, 'cnb_cap': 3, 'max_cwb': 3},
}

TOUR_TYPES = ('group', 'private')

ZERO = Decimal('0')


# =====================================================
# EXCEPTIONS
# =====================================================

class QuoteEngineError(Exception):
    """Base exception for quote engine errors"""
    pass

class QuoteValidationError(QuoteEngineError):
    """Input rejected before any cost is derived. Message is user-facing."""
    pass

class ComponentNotFoundError(QuoteEngineError):
    pass


# =====================================================
# NUMERIC HELPERS
# =====================================================

def to_decimal(value: Any, field_name: str, allow_empty: bool = False) -> Optional[Decimal]:
    """Parse a user-entered amount. Empty values give None when allowed."""
    if value is None or (isinstance(value, str) and not value.strip()):
        if allow_empty:
            return None
        raise QuoteValidationError(f"{field_name} is required")
    if isinstance(value, bool):
        raise QuoteValidationError(f"{field_name} must be a number")
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise QuoteValidationError(f"{field_name} must be a number")
    if not amount.is_finite():
        raise QuoteValidationError(f"{field_name} must be a number")
    return amount


def to_int(value: Any, field_name: str, default: int = 0) -> int:
    if value is None or value == '':
        return default
    if isinstance(value, bool):
        raise QuoteValidationError(f"{field_name} must be a whole number")
    try:
        return int(str(value).strip())
    except ValueError:
        raise QuoteValidationError(f"{field_name} must be a whole number")


def ceil_amount(value: Decimal) -> int:
    return int(Decimal(value).to_integral_value(rounding=ROUND_CEILING))


def aed_to_usd(aed: int, exchange_rate: Decimal = QUOTE_EXCHANGE_RATE) -> int:
    return ceil_amount(Decimal(aed) / exchange_rate)


def _decimal_out(value: Optional[Decimal]) -> Optional[float]:
    return float(value) if value is not None else None


# =====================================================
# INPUT MODEL
# =====================================================

@dataclass(frozen=True)
class PaxComposition:
    adults: int = 2
    cwb: int = 0       # child with bed, 6-17y
    cnb: int = 0       # child no bed, 3-5y
    infants: int = 0

    @property
    def total_pax(self) -> int:
        return self.adults + self.cwb + self.cnb + self.infants

    @property
    def paying_pax(self) -> int:
        return self.adults + self.cwb + self.cnb

    @property
    def children(self) -> int:
        return self.cwb + self.cnb

    def summary(self) -> str:
        """'2 Adults + 1 CWB + 1 Infant' style pax line."""
        parts = [f"{self.adults} Adult{'s' if self.adults != 1 else ''}"]
        if self.cwb:
            parts.append(f"{self.cwb} CWB")
        if self.cnb:
            parts.append(f"{self.cnb} CNB")
        if self.infants:
            parts.append(f"{self.infants} Infant{'s' if self.infants != 1 else ''}")
        return ' + '.join(parts)

    def to_dict(self) -> Dict[str, int]:
        return {'adults': self.adults, 'cwb': self.cwb, 'cnb': self.cnb, 'infants': self.infants}


@dataclass(frozen=True)
class StayPeriod:
    check_in: date
    check_out: date

    @property
    def nights(self) -> int:
        return (self.check_out - self.check_in).days

    def to_dict(self) -> Dict[str, str]:
        return {'check_in': self.check_in.isoformat(), 'check_out': self.check_out.isoformat()}


@dataclass(frozen=True)
class OccupancySelection:
    single: bool = False
    double: bool = False
    triple: bool = False
    apartment_type: Optional[str] = None

    @property
    def is_apartment(self) -> bool:
        return bool(self.apartment_type)

    def active_types(self) -> Tuple[str, ...]:
        """Selected room occupancies in display order. Empty in apartment mode."""
        if self.is_apartment:
            return ()
        return tuple(o for o in OCCUPANCY_ORDER if getattr(self, o))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'single': self.single,
            'double': self.double,
            'triple': self.triple,
            'apartment_type': self.apartment_type,
        }


@dataclass(frozen=True)
class HotelOption:
    id: str
    name: str
    rate: Optional[Decimal]                 # AED per night
    extra_bed_rate: Decimal = ZERO          # AED per night

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'rate': _decimal_out(self.rate),
            'extra_bed_rate': _decimal_out(self.extra_bed_rate),
        }


@dataclass(frozen=True)
class TourSelection:
    id: str
    name: str
    cost_per_person: Decimal
    type: str = 'group'
    transfer_cost: Optional[Decimal] = None  # private tours: flat, split across paying pax

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'cost_per_person': _decimal_out(self.cost_per_person),
            'type': self.type,
            'transfer_cost': _decimal_out(self.transfer_cost),
        }


@dataclass(frozen=True)
class AddOns:
    include_visa: bool = False
    include_airport_transfer: bool = False
    manual_transfer_cost: Optional[Decimal] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'include_visa': self.include_visa,
            'include_airport_transfer': self.include_airport_transfer,
            'manual_transfer_cost': _decimal_out(self.manual_transfer_cost),
        }


@dataclass(frozen=True)
class QuoteDraft:
    """Everything the operator entered for one quote. Immutable."""
    stay: StayPeriod
    pax: PaxComposition
    occupancy: OccupancySelection
    hotels: Tuple[HotelOption, ...]
    tours: Tuple[TourSelection, ...] = ()
    add_ons: AddOns = field(default_factory=AddOns)
    customer_name: str = ''
    customer_email: str = ''
    inclusions: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'customer_name': self.customer_name,
            'customer_email': self.customer_email,
            'check_in': self.stay.check_in.isoformat(),
            'check_out': self.stay.check_out.isoformat(),
            'pax': self.pax.to_dict(),
            'occupancy': self.occupancy.to_dict(),
            'hotels': [h.to_dict() for h in self.hotels],
            'tours': [t.to_dict() for t in self.tours],
            'add_ons': self.add_ons.to_dict(),
            'inclusions': list(self.inclusions),
        }


# =====================================================
# OUTPUT MODEL
# =====================================================

@dataclass(frozen=True)
class Money:
    aed: int
    usd: int

    @classmethod
    def from_aed(cls, aed_total: Decimal, exchange_rate: Decimal = QUOTE_EXCHANGE_RATE) -> 'Money':
        aed = ceil_amount(aed_total)
        return cls(aed=aed, usd=aed_to_usd(aed, exchange_rate))

    def to_dict(self) -> Dict[str, int]:
        return {'aed': self.aed, 'usd': self.usd}


@dataclass(frozen=True)
class ApartmentSplit:
    apartment_type: str
    adult_cap: int
    cnb_cap: int
    max_cwb: int
    capacity_left: int
    cwb_without_extra_bed: int
    cwb_with_extra_bed: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'apartment_type': self.apartment_type,
            'adult_cap': self.adult_cap,
            'cnb_cap': self.cnb_cap,
            'max_cwb': self.max_cwb,
            'capacity_left': self.capacity_left,
            'cwb_without_extra_bed': self.cwb_without_extra_bed,
            'cwb_with_extra_bed': self.cwb_with_extra_bed,
        }


@dataclass(frozen=True)
class TourLine:
    name: str
    type: str
    per_person_aed: int     # all-in: cost per person + private transfer share

    def to_dict(self) -> Dict[str, Any]:
        return {'name': self.name, 'type': self.type, 'per_person_aed': self.per_person_aed}


@dataclass(frozen=True)
class HotelOptionCost:
    """Per-person prices of one hotel option.

    ``adult`` is keyed by occupancy ('single', 'double', 'triple') or by
    'apartment' in apartment mode, in display order.
    """
    hotel: HotelOption
    hotel_cost_per_person: Dict[str, int]
    adult: Dict[str, Money]
    cwb: Optional[Money]
    cnb: Optional[Money]
    cwb_needs_extra_bed: bool

    @property
    def primary_occupancy(self) -> str:
        if APARTMENT in self.adult:
            return APARTMENT
        for occupancy in PRIMARY_OCCUPANCY_ORDER:
            if occupancy in self.adult:
                return occupancy
        raise ComponentNotFoundError(f"No priced occupancy for hotel {self.hotel.name}")

    @property
    def primary_adult(self) -> Money:
        return self.adult[self.primary_occupancy]

    @property
    def child_total(self) -> Optional[Money]:
        return self.cwb if self.cwb is not None else self.cnb

    def to_dict(self) -> Dict[str, Any]:
        return {
            'hotel': self.hotel.to_dict(),
            'hotel_cost_per_person': dict(self.hotel_cost_per_person),
            'adult': {k: v.to_dict() for k, v in self.adult.items()},
            'cwb': self.cwb.to_dict() if self.cwb else None,
            'cnb': self.cnb.to_dict() if self.cnb else None,
            'cwb_needs_extra_bed': self.cwb_needs_extra_bed,
            'primary_occupancy': self.primary_occupancy,
        }


@dataclass(frozen=True)
class QuoteCalculation:
    draft: QuoteDraft
    nights: int
    special_double: bool
    apartment: Optional[ApartmentSplit]
    tours_cost_per_person: Decimal
    tour_lines: Tuple[TourLine, ...]
    visa_adult: int
    visa_child: int
    infant_visa_usd: int
    airport_transfer_total: Decimal
    airport_transfer_per_adult: Decimal
    options: Tuple[HotelOptionCost, ...]
    exchange_rate: Decimal = QUOTE_EXCHANGE_RATE
    warnings: Tuple[str, ...] = ()

    @property
    def is_apartment(self) -> bool:
        return self.apartment is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'nights': self.nights,
            'pax': self.draft.pax.to_dict(),
            'totalPax': self.draft.pax.total_pax,
            'payingPax': self.draft.pax.paying_pax,
            'specialDouble': self.special_double,
            'apartment': self.apartment.to_dict() if self.apartment else None,
            'toursCostPerPerson': float(self.tours_cost_per_person),
            'tours': [t.to_dict() for t in self.tour_lines],
            'visaAdult': self.visa_adult,
            'visaChild': self.visa_child,
            'infantVisaUsd': self.infant_visa_usd,
            'airportTransferTotal': float(self.airport_transfer_total),
            'airportTransferPerAdult': float(self.airport_transfer_per_adult),
            'options': [o.to_dict() for o in self.options],
            'exchangeRate': float(self.exchange_rate),
            'warnings': list(self.warnings),
        }


# =====================================================
# PAX / OCCUPANCY NORMALIZER
# =====================================================

class PaxNormalizer:
    """
    Validates and classifies pax/occupancy input before any cost is derived.
    """

    @staticmethod
    def validate(draft: QuoteDraft) -> int:
        """Reject unusable input. Returns the number of nights."""
        nights = draft.stay.nights
        if nights <= 0:
            raise QuoteValidationError("Check-out date must be after check-in date")

        pax = draft.pax
        for name in ('adults', 'cwb', 'cnb', 'infants'):
            if getattr(pax, name) < 0:
                raise QuoteValidationError(f"{name} cannot be negative")
        if pax.total_pax < 1:
            raise QuoteValidationError("At least 1 traveler required")
        if pax.adults < 1:
            raise QuoteValidationError("At least 1 adult required")

        occupancy = draft.occupancy
        if occupancy.is_apartment:
            if occupancy.apartment_type not in APARTMENT_CAPACITY:
                raise QuoteValidationError(f"Unknown apartment type: {occupancy.apartment_type}")
        elif not occupancy.active_types():
            raise QuoteValidationError("Select at least one occupancy type")

        if not draft.hotels:
            raise QuoteValidationError("Please select a hotel")
        for hotel in draft.hotels:
            if hotel.rate is None:
                raise QuoteValidationError(f"Please enter the hotel rate for {hotel.name}")
            if hotel.rate < 0 or hotel.extra_bed_rate < 0:
                raise QuoteValidationError(f"Hotel rates for {hotel.name} cannot be negative")

        for tour in draft.tours:
            if tour.type not in TOUR_TYPES:
                raise QuoteValidationError(f"Unknown tour type for {tour.name}: {tour.type}")
            if tour.cost_per_person < 0 or (tour.transfer_cost or ZERO) < 0:
                raise QuoteValidationError(f"Tour costs for {tour.name} cannot be negative")

        return nights

    @staticmethod
    def is_special_double(pax: PaxComposition) -> bool:
        """
        Adults pair up one-to-one with children who need a bed, so each
        double room holds one adult and one child sharing the room cost.
        """
        if pax.cnb != 0 or pax.cwb == 0:
            return False
        if pax.adults == pax.cwb and pax.adults % 2 == 0:
            return True
        return pax.adults == 1 and pax.cwb == 1

    @staticmethod
    def apartment_split(pax: PaxComposition, apartment_type: str) -> ApartmentSplit:
        """
        How many children with bed fit in the apartment's own capacity
        and how many need a charged extra bed.
        """
        capacity = APARTMENT_CAPACITY.get(apartment_type)
        if not capacity:
            raise QuoteValidationError(f"Unknown apartment type: {apartment_type}")

        capacity_left = capacity['adult_cap'] - (pax.adults + pax.cnb)
        without_extra_bed = max(0, min(pax.cwb, capacity_left))
        with_extra_bed = max(0, pax.cwb - without_extra_bed)

        return ApartmentSplit(
            apartment_type=apartment_type,
            adult_cap=capacity['adult_cap'],
            cnb_cap=capacity['cnb_cap'],
            max_cwb=capacity['max_cwb'],
            capacity_left=capacity_left,
            cwb_without_extra_bed=without_extra_bed,
            cwb_with_extra_bed=with_extra_bed,
        )


# =====================================================
# COST CALCULATOR
# =====================================================

class CostCalculator:
    """Per-person cost components. All inputs and outputs are AED."""

    @staticmethod
    def hotel_cost_per_person(rate: Optional[Decimal], nights: int, occupancy: str) -> int:
        if not rate or nights <= 0:
            return 0
        divisor = OCCUPANCY_DIVISORS[occupancy]
        return ceil_amount(rate * nights / divisor)

    @staticmethod
    def tour_cost_per_person(tour: TourSelection, paying_pax: int) -> Decimal:
        cost = tour.cost_per_person
        if tour.type == 'private' and tour.transfer_cost:
            # no paying pax: transfer share is 0
            if paying_pax > 0:
                cost += tour.transfer_cost / paying_pax
        return cost

    @staticmethod
    def tours_cost_per_person(tours: Tuple[TourSelection, ...], paying_pax: int) -> Decimal:
        total = ZERO
        for tour in tours:
            total += CostCalculator.tour_cost_per_person(tour, paying_pax)
        return total

    @staticmethod
    def airport_transfer_total(add_ons: AddOns, total_pax: int) -> Decimal:
        if not add_ons.include_airport_transfer:
            return ZERO

        manual = add_ons.manual_transfer_cost
        if manual is not None and manual > 0:
            return manual

        for low, high, amount in AIRPORT_TRANSFER_TIERS:
            if low <= total_pax <= high:
                return amount

        logger.warning(
            f"Airport transfer: no tier covers {total_pax} pax, transfer priced at 0. "
            f"Enter a manual transfer cost for large groups."
        )
        return ZERO

    @staticmethod
    def airport_transfer_per_adult(transfer_total: Decimal, adults: int) -> Decimal:
        if adults <= 0:
            return ZERO
        return transfer_total / adults

    @staticmethod
    def visa_costs(add_ons: AddOns) -> Tuple[Decimal, Decimal]:
        """(adult, child) visa cost in AED."""
        if not add_ons.include_visa:
            return ZERO, ZERO
        return VISA_ADULT_AED, VISA_CHILD_AED


# =====================================================
# MAIN QUOTE ENGINE
# =====================================================

class QuotePricingEngine:
    """
    Quote pricing engine.

    Standard mode prices each selected occupancy (single/double/triple)
    per adult; children with bed pay an extra bed, children without bed
    pay tours and visa only.

    Special double occupancy (adults pair one-to-one with children with
    bed) splits one double room's cost 50/50 between adult and child.

    Apartment mode shares the apartment cost across adults and the children
    that fit its capacity; remaining children with bed pay an extra bed.
    """

    def __init__(self, exchange_rate: Decimal = QUOTE_EXCHANGE_RATE):
        self.exchange_rate = exchange_rate
        self.normalizer = PaxNormalizer()
        self.costs = CostCalculator()

    # -------------------------------------------------
    # MAIN ENTRY POINT
    # -------------------------------------------------

    def calculate_quote(self, draft: QuoteDraft) -> QuoteCalculation:
        nights = self.normalizer.validate(draft)
        pax = draft.pax
        add_ons = draft.add_ons
        occupancy = draft.occupancy

        tours_pp = self.costs.tours_cost_per_person(draft.tours, pax.paying_pax)
        tour_lines = tuple(
            TourLine(
                name=t.name,
                type=t.type,
                per_person_aed=ceil_amount(self.costs.tour_cost_per_person(t, pax.paying_pax)),
            )
            for t in draft.tours
        )

        transfer_total = self.costs.airport_transfer_total(add_ons, pax.total_pax)
        transfer_pa = self.costs.airport_transfer_per_adult(transfer_total, pax.adults)
        visa_adult, visa_child = self.costs.visa_costs(add_ons)
        infant_visa_usd = VISA_INFANT_USD if add_ons.include_visa and pax.infants else 0

        warnings: List[str] = []
        apartment = None
        special_double = False

        if occupancy.is_apartment:
            apartment = self.normalizer.apartment_split(pax, occupancy.apartment_type)
            logger.info(
                f"Apartment {apartment.apartment_type}: capacity_left={apartment.capacity_left}, "
                f"cwb_without_extra_bed={apartment.cwb_without_extra_bed}, "
                f"cwb_with_extra_bed={apartment.cwb_with_extra_bed}"
            )
            warnings.extend(self._apartment_warnings(pax, apartment))
            options = tuple(
                self._price_apartment(
                    hotel, nights, pax, apartment,
                    tours_pp, visa_adult, visa_child, transfer_pa
                )
                for hotel in draft.hotels
            )
        else:
            special_double = (
                'double' in occupancy.active_types()
                and self.normalizer.is_special_double(pax)
            )
            if special_double:
                logger.info(
                    f"Special double occupancy: adults={pax.adults}, cwb={pax.cwb} "
                    f"share double rooms 50/50"
                )
            options = tuple(
                self._price_rooms(
                    hotel, nights, pax, occupancy.active_types(), special_double,
                    tours_pp, visa_adult, visa_child, transfer_pa
                )
                for hotel in draft.hotels
            )

        if add_ons.include_airport_transfer and transfer_total == 0:
            warnings.append(
                f"No airport transfer tier covers {pax.total_pax} pax; transfer priced at 0"
            )

        result = QuoteCalculation(
            draft=draft,
            nights=nights,
            special_double=special_double,
            apartment=apartment,
            tours_cost_per_person=tours_pp,
            tour_lines=tour_lines,
            visa_adult=ceil_amount(visa_adult),
            visa_child=ceil_amount(visa_child),
            infant_visa_usd=infant_visa_usd,
            airport_transfer_total=transfer_total,
            airport_transfer_per_adult=transfer_pa,
            options=options,
            exchange_rate=self.exchange_rate,
            warnings=tuple(warnings),
        )

        logger.info(
            f"Quote calculated: nights={nights}, pax={pax.summary()}, "
            f"options={len(options)}, special_double={special_double}, "
            f"apartment={occupancy.apartment_type or 'no'}"
        )
        return result

    # -------------------------------------------------
    # ROOM OCCUPANCY PATH
    # -------------------------------------------------

    def _price_rooms(
        self, hotel, nights, pax, occupancies, special_double,
        tours_pp, visa_adult, visa_child, transfer_pa
    ) -> HotelOptionCost:
        rate = hotel.rate
        # half of one double room, shared by an adult and a child with bed
        half_room = ceil_amount(rate * nights / 2)

        hotel_pp = {
            occ: self.costs.hotel_cost_per_person(rate, nights, occ)
            for occ in occupancies
        }
        if special_double:
            hotel_pp['double'] = half_room

        adult = {}
        for occ in occupancies:
            adult[occ] = Money.from_aed(
                hotel_pp[occ] + tours_pp + visa_adult + transfer_pa, self.exchange_rate
            )

        cwb = None
        if pax.cwb > 0:
            if special_double:
                child_base = half_room
            else:
                child_base = ceil_amount(hotel.extra_bed_rate * nights)
            cwb = Money.from_aed(child_base + tours_pp + visa_child, self.exchange_rate)

        cnb = None
        if pax.cnb > 0:
            cnb = Money.from_aed(tours_pp + visa_child, self.exchange_rate)

        return HotelOptionCost(
            hotel=hotel,
            hotel_cost_per_person=hotel_pp,
            adult=adult,
            cwb=cwb,
            cnb=cnb,
            cwb_needs_extra_bed=pax.cwb > 0 and not special_double,
        )

    # -------------------------------------------------
    # APARTMENT PATH
    # -------------------------------------------------

    def _price_apartment(
        self, hotel, nights, pax, split,
        tours_pp, visa_adult, visa_child, transfer_pa
    ) -> HotelOptionCost:
        apartment_total = hotel.rate * nights
        sharers = pax.adults + split.cwb_without_extra_bed
        share = ceil_amount(apartment_total / sharers)

        adult = {
            APARTMENT: Money.from_aed(
                share + tours_pp + visa_adult + transfer_pa, self.exchange_rate
            )
        }

        cwb = None
        if pax.cwb > 0:
            extra_bed = ceil_amount(hotel.extra_bed_rate * nights)
            # head-count weighted blend of shared-capacity and extra-bed children
            child_base = ceil_amount(Decimal(
                share * split.cwb_without_extra_bed
                + extra_bed * split.cwb_with_extra_bed
            ) / pax.cwb)
            cwb = Money.from_aed(child_base + tours_pp + visa_child, self.exchange_rate)

        cnb = None
        if pax.cnb > 0:
            cnb = Money.from_aed(tours_pp + visa_child, self.exchange_rate)

        return HotelOptionCost(
            hotel=hotel,
            hotel_cost_per_person={APARTMENT: share},
            adult=adult,
            cwb=cwb,
            cnb=cnb,
            cwb_needs_extra_bed=split.cwb_with_extra_bed > 0,
        )

    @staticmethod
    def _apartment_warnings(pax: PaxComposition, split: ApartmentSplit) -> List[str]:
        warnings = []
        if pax.cnb > split.cnb_cap:
            warnings.append(
                f"{split.apartment_type} fits {split.cnb_cap} child(ren) without bed, "
                f"{pax.cnb} requested"
            )
        if split.cwb_with_extra_bed > split.max_cwb:
            warnings.append(
                f"{split.apartment_type} allows {split.max_cwb} extra bed(s), "
                f"{split.cwb_with_extra_bed} needed"
            )
        for w in warnings:
            logger.warning(f"Apartment capacity: {w}")
        return warnings


# =====================================================
# PAYLOAD PARSING
# =====================================================

def _parse_date(value: Any, field_name: str) -> date:
    if isinstance(value, date):
        return value
    if not value:
        raise QuoteValidationError(f"Missing required field: {field_name}")
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        raise QuoteValidationError(f"{field_name} must be a date (YYYY-MM-DD)")


def _hotel_from_payload(data: Dict[str, Any]) -> HotelOption:
    name = data.get('name') or 'Hotel'
    return HotelOption(
        id=str(data.get('id') or ''),
        name=name,
        rate=to_decimal(data.get('rate'), f"Hotel rate for {name}", allow_empty=True),
        extra_bed_rate=to_decimal(
            data.get('extra_bed_rate'), f"Extra bed rate for {name}", allow_empty=True
        ) or ZERO,
    )


def _tour_from_payload(data: Dict[str, Any]) -> TourSelection:
    name = data.get('name') or 'Tour'
    return TourSelection(
        id=str(data.get('id') or ''),
        name=name,
        cost_per_person=to_decimal(
            data.get('cost_per_person'), f"Cost per person for {name}", allow_empty=True
        ) or ZERO,
        type=(data.get('type') or 'group').lower().strip(),
        transfer_cost=to_decimal(
            data.get('transfer_cost'), f"Transfer cost for {name}", allow_empty=True
        ),
    )


def draft_from_payload(payload: Dict[str, Any]) -> QuoteDraft:
    """Build a QuoteDraft from request JSON (the shape QuoteDraft.to_dict emits)."""
    if not payload:
        raise QuoteValidationError("No data provided")

    stay = StayPeriod(
        check_in=_parse_date(payload.get('check_in'), 'check_in'),
        check_out=_parse_date(payload.get('check_out'), 'check_out'),
    )

    pax_data = payload.get('pax') or {}
    pax = PaxComposition(
        adults=to_int(pax_data.get('adults'), 'adults', default=2),
        cwb=to_int(pax_data.get('cwb'), 'cwb'),
        cnb=to_int(pax_data.get('cnb'), 'cnb'),
        infants=to_int(pax_data.get('infants'), 'infants'),
    )

    occ = payload.get('occupancy') or {}
    apartment_type = (occ.get('apartment_type') or '').upper().strip() or None
    occupancy = OccupancySelection(
        single=bool(occ.get('single')),
        double=bool(occ.get('double')),
        triple=bool(occ.get('triple')),
        apartment_type=apartment_type,
    )

    add = payload.get('add_ons') or {}
    add_ons = AddOns(
        include_visa=bool(add.get('include_visa')),
        include_airport_transfer=bool(add.get('include_airport_transfer')),
        manual_transfer_cost=to_decimal(
            add.get('manual_transfer_cost'), 'Manual transfer cost', allow_empty=True
        ),
    )

    return QuoteDraft(
        stay=stay,
        pax=pax,
        occupancy=occupancy,
        hotels=tuple(_hotel_from_payload(h) for h in payload.get('hotels') or []),
        tours=tuple(_tour_from_payload(t) for t in payload.get('tours') or []),
        add_ons=add_ons,
        customer_name=(payload.get('customer_name') or '').strip(),
        customer_email=(payload.get('customer_email') or '').strip(),
        inclusions=tuple(str(i) for i in payload.get('inclusions') or [] if i),
    )
