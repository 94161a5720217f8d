from datetime import date
from decimal import Decimal

import pytest

from _helpers import make_draft, group_tour, private_tour

from quote_engine import (
    AddOns,
    CostCalculator,
    HotelOption,
    Money,
    OccupancySelection,
    PaxComposition,
    PaxNormalizer,
    QuotePricingEngine,
    QuoteValidationError,
    draft_from_payload,
)


engine = QuotePricingEngine()


# =====================================================
# VALIDATION
# =====================================================

def test_zero_nights_is_rejected():
    draft = make_draft(nights=0)
    with pytest.raises(QuoteValidationError, match='Check-out date must be after check-in date'):
        engine.calculate_quote(draft)


def test_checkout_before_checkin_is_rejected():
    draft = make_draft(nights=-2)
    with pytest.raises(QuoteValidationError):
        engine.calculate_quote(draft)


def test_no_travellers_is_rejected():
    with pytest.raises(QuoteValidationError, match='At least 1 traveler required'):
        engine.calculate_quote(make_draft(adults=0))


def test_children_without_adult_are_rejected():
    with pytest.raises(QuoteValidationError, match='At least 1 adult required'):
        engine.calculate_quote(make_draft(adults=0, cwb=1))


def test_missing_hotel_and_rate_are_rejected():
    with pytest.raises(QuoteValidationError, match='Please select a hotel'):
        engine.calculate_quote(make_draft(hotels=()))

    with pytest.raises(QuoteValidationError, match='Please enter the hotel rate for Hotel A'):
        engine.calculate_quote(make_draft(rate=None))


def test_occupancy_must_be_selected():
    with pytest.raises(QuoteValidationError, match='Select at least one occupancy type'):
        engine.calculate_quote(make_draft(occupancy=OccupancySelection()))


def test_unknown_apartment_type_is_rejected():
    with pytest.raises(QuoteValidationError, match='Unknown apartment type'):
        engine.calculate_quote(make_draft(occupancy=OccupancySelection(apartment_type='05BR')))


# =====================================================
# SPECIAL DOUBLE OCCUPANCY
# =====================================================

@pytest.mark.parametrize('adults, cwb, cnb, expected', [
    (2, 2, 0, True),
    (4, 4, 0, True),
    (1, 1, 0, True),
    (2, 0, 0, False),
    (3, 3, 0, False),
    (2, 1, 0, False),
    (2, 2, 1, False),
])
def test_special_double_detection(adults, cwb, cnb, expected):
    pax = PaxComposition(adults=adults, cwb=cwb, cnb=cnb)
    assert PaxNormalizer.is_special_double(pax) is expected


def test_special_double_splits_room_between_adult_and_child():
    calc = engine.calculate_quote(make_draft(adults=2, cwb=2))
    option = calc.options[0]

    assert calc.special_double is True
    # 500 x 3 nights, half each
    assert option.adult['double'] == Money(aed=750, usd=206)
    assert option.cwb == Money(aed=750, usd=206)
    assert option.cwb_needs_extra_bed is False


def test_special_double_adult_price_is_half_room_plus_extras():
    calc = engine.calculate_quote(make_draft(
        adults=2, cwb=2, rate='501', nights=1, tours=[group_tour(cost='100.4')],
    ))
    option = calc.options[0]

    # half of 501 rounds up to 251, then 100.4 of tours rounds up to 101
    assert option.hotel_cost_per_person['double'] == 251
    assert option.adult['double'].aed == 352
    assert option.adult['double'].aed == option.hotel_cost_per_person['double'] + 101
    assert option.cwb.aed == 352


def test_special_double_needs_double_selected():
    calc = engine.calculate_quote(
        make_draft(adults=2, cwb=2, occupancy=OccupancySelection(single=True))
    )
    option = calc.options[0]

    assert calc.special_double is False
    assert option.adult['single'].aed == 1500
    assert option.cwb.aed == 450
    assert option.cwb_needs_extra_bed is True


# =====================================================
# STANDARD ROOMS
# =====================================================

def test_standard_occupancies_divide_room_cost():
    calc = engine.calculate_quote(make_draft(
        rate='333',
        nights=1,
        occupancy=OccupancySelection(single=True, double=True, triple=True),
    ))
    option = calc.options[0]

    assert list(option.adult) == ['single', 'double', 'triple']
    assert option.hotel_cost_per_person == {'single': 333, 'double': 167, 'triple': 111}
    assert option.primary_occupancy == 'double'


def test_standard_adult_price_is_hotel_share_plus_extras():
    option = engine.calculate_quote(make_draft(
        rate='333', nights=1, tours=[group_tour(cost='100.4')],
    )).options[0]

    assert option.hotel_cost_per_person['double'] == 167
    assert option.adult['double'].aed == 167 + 101


def test_children_pay_extra_bed_or_tours_and_visa_only():
    calc = engine.calculate_quote(make_draft(
        adults=2, cwb=1, cnb=1,
        tours=[group_tour()],
        add_ons=AddOns(include_visa=True),
    ))
    option = calc.options[0]

    assert option.adult['double'].aed == 750 + 150 + 310
    assert option.cwb.aed == 450 + 150 + 73
    assert option.cnb.aed == 150 + 73
    assert option.child_total == option.cwb


def test_no_child_prices_without_children():
    option = engine.calculate_quote(make_draft()).options[0]
    assert option.cwb is None
    assert option.cnb is None
    assert option.child_total is None


def test_every_hotel_option_is_priced():
    hotels = (
        HotelOption(id='a', name='Hotel A', rate=Decimal('500')),
        HotelOption(id='b', name='Hotel B', rate=Decimal('800')),
    )
    calc = engine.calculate_quote(make_draft(hotels=hotels))
    assert [o.adult['double'].aed for o in calc.options] == [750, 1200]


# =====================================================
# APARTMENTS
# =====================================================

def test_apartment_split_uses_remaining_capacity():
    split = PaxNormalizer.apartment_split(PaxComposition(adults=1, cwb=2), '01BR')
    assert split.capacity_left == 1
    assert split.cwb_without_extra_bed == 1
    assert split.cwb_with_extra_bed == 1

    split = PaxNormalizer.apartment_split(PaxComposition(adults=2, cwb=1), '01BR')
    assert split.capacity_left == 0
    assert split.cwb_without_extra_bed == 0
    assert split.cwb_with_extra_bed == 1


def test_apartment_pricing_shares_cost_and_charges_extra_beds():
    calc = engine.calculate_quote(make_draft(
        adults=1, cwb=2,
        rate='600', extra_bed_rate='100', nights=2,
        occupancy=OccupancySelection(apartment_type='01BR'),
    ))
    option = calc.options[0]

    assert calc.is_apartment
    assert calc.special_double is False
    # 1200 shared by 1 adult + 1 child, second child on a 200 extra bed
    assert option.adult['apartment'].aed == 600
    assert option.cwb.aed == 400
    assert option.cwb_needs_extra_bed is True
    assert option.primary_occupancy == 'apartment'


def test_apartment_adult_price_is_share_plus_extras():
    calc = engine.calculate_quote(make_draft(
        adults=3, rate='1000', nights=1,
        tours=[group_tour(cost='100.4')],
        occupancy=OccupancySelection(apartment_type='02BR'),
    ))
    option = calc.options[0]

    assert calc.warnings == ()
    # 1000 / 3 rounds up to 334
    assert option.hotel_cost_per_person == {'apartment': 334}
    assert option.adult['apartment'].aed == 334 + 101


def test_apartment_child_with_bed_blends_rounded_shares():
    option = engine.calculate_quote(make_draft(
        adults=1, cwb=2, rate='601', extra_bed_rate='100.5', nights=1,
        occupancy=OccupancySelection(apartment_type='01BR'),
    )).options[0]

    # share 301 for the child in capacity, 101 extra bed for the other
    assert option.hotel_cost_per_person == {'apartment': 301}
    assert option.cwb.aed == 201


def test_apartment_capacity_overflow_is_a_warning():
    calc = engine.calculate_quote(make_draft(
        adults=2, cnb=2,
        occupancy=OccupancySelection(apartment_type='01BR'),
    ))
    assert any('without bed' in w for w in calc.warnings)


# =====================================================
# TOURS, VISA, TRANSFERS
# =====================================================

def test_private_tour_transfer_is_split_across_paying_pax():
    tour = private_tour(cost='100', transfer='300')
    assert CostCalculator.tour_cost_per_person(tour, 3) == Decimal('200')


def test_private_tour_without_paying_pax_skips_transfer():
    tour = private_tour(cost='100', transfer='300')
    assert CostCalculator.tour_cost_per_person(tour, 0) == Decimal('100')


def test_group_tour_ignores_transfer_cost():
    tour = group_tour(cost='150')
    assert CostCalculator.tour_cost_per_person(tour, 3) == Decimal('150')


def test_tour_lines_carry_per_person_price():
    calc = engine.calculate_quote(make_draft(adults=2, cwb=1, tours=[private_tour()]))
    assert calc.tour_lines[0].per_person_aed == 200
    assert calc.tour_lines[0].type == 'private'


@pytest.mark.parametrize('total_pax, expected', [
    (1, Decimal('250')),
    (5, Decimal('250')),
    (7, Decimal('500')),
    (11, Decimal('1000')),
    (17, Decimal('1000')),
    (20, Decimal('0')),
])
def test_airport_transfer_tiers(total_pax, expected):
    add_ons = AddOns(include_airport_transfer=True)
    assert CostCalculator.airport_transfer_total(add_ons, total_pax) == expected


def test_manual_transfer_cost_overrides_tiers():
    add_ons = AddOns(include_airport_transfer=True, manual_transfer_cost=Decimal('800'))
    assert CostCalculator.airport_transfer_total(add_ons, 3) == Decimal('800')


def test_transfer_is_charged_to_adults_only():
    calc = engine.calculate_quote(make_draft(
        adults=2, cwb=1, add_ons=AddOns(include_airport_transfer=True),
    ))
    option = calc.options[0]

    assert calc.airport_transfer_total == Decimal('250')
    assert calc.airport_transfer_per_adult == Decimal('125')
    assert option.adult['double'].aed == 750 + 125
    assert option.cwb.aed == 450


def test_large_group_transfer_is_free_with_warning():
    calc = engine.calculate_quote(make_draft(
        adults=20, occupancy=OccupancySelection(double=True),
        add_ons=AddOns(include_airport_transfer=True),
    ))
    assert calc.airport_transfer_total == 0
    assert any('20 pax' in w for w in calc.warnings)


def test_transfer_per_adult_guards_zero_adults():
    assert CostCalculator.airport_transfer_per_adult(Decimal('250'), 0) == 0


def test_visa_costs_and_infant_note():
    calc = engine.calculate_quote(make_draft(
        adults=2, cwb=1, infants=1, add_ons=AddOns(include_visa=True),
    ))
    assert calc.visa_adult == 310
    assert calc.visa_child == 73
    assert calc.infant_visa_usd == 20

    calc = engine.calculate_quote(make_draft(infants=1))
    assert calc.visa_adult == 0
    assert calc.infant_visa_usd == 0


# =====================================================
# ROUNDING
# =====================================================

def test_usd_is_ceiling_of_rounded_aed():
    assert Money.from_aed(Decimal('365')) == Money(aed=365, usd=100)
    assert Money.from_aed(Decimal('365.01')) == Money(aed=366, usd=101)


def test_calculation_is_deterministic():
    draft = make_draft(adults=2, cwb=1, tours=[group_tour(), private_tour()],
                       add_ons=AddOns(include_visa=True, include_airport_transfer=True))
    assert engine.calculate_quote(draft).to_dict() == engine.calculate_quote(draft).to_dict()


# =====================================================
# PAYLOAD PARSING
# =====================================================

def test_draft_from_payload_requires_data():
    with pytest.raises(QuoteValidationError, match='No data provided'):
        draft_from_payload({})
    with pytest.raises(QuoteValidationError, match='Missing required field: check_in'):
        draft_from_payload({'check_out': '2026-03-08'})


def test_draft_from_payload_parses_request_json():
    draft = draft_from_payload({
        'customer_name': '  Ahmed ',
        'check_in': '2026-03-05',
        'check_out': '2026-03-08',
        'pax': {'adults': '2', 'cwb': 1},
        'occupancy': {'apartment_type': '02br'},
        'hotels': [{'id': 7, 'name': 'Marina Suites', 'rate': '900', 'extra_bed_rate': ''}],
        'tours': [{'name': 'Dhow Cruise', 'cost_per_person': 120, 'type': 'Private', 'transfer_cost': 200}],
        'add_ons': {'include_visa': True},
    })

    assert draft.customer_name == 'Ahmed'
    assert draft.stay.check_in == date(2026, 3, 5)
    assert draft.stay.nights == 3
    assert draft.pax == PaxComposition(adults=2, cwb=1)
    assert draft.occupancy.apartment_type == '02BR'
    assert draft.hotels[0].id == '7'
    assert draft.hotels[0].rate == Decimal('900')
    assert draft.hotels[0].extra_bed_rate == 0
    assert draft.tours[0].type == 'private'
    assert draft.add_ons.include_visa is True


def test_draft_from_payload_rejects_bad_numbers():
    with pytest.raises(QuoteValidationError, match='must be a whole number'):
        draft_from_payload({'check_in': '2026-03-05', 'check_out': '2026-03-08', 'pax': {'adults': 'two'}})
    with pytest.raises(QuoteValidationError, match='must be a number'):
        draft_from_payload({
            'check_in': '2026-03-05', 'check_out': '2026-03-08',
            'hotels': [{'name': 'X', 'rate': 'abc'}],
        })
