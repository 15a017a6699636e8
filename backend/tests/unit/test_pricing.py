"""
Unit tests for the price band engine.

WHAT: Test the floor/target formula, modal price fallbacks and floor checks
WHY: Buyer offers are blocked on the computed floor, so a wrong band either
     blocks fair offers or lets distress sales through
HOW: Pure function calls, plus the engine with located products
"""

import pytest

from bazaar.models.negotiation import BuyerOffer, FarmerLocation, PriceBand, Product
from bazaar.services.negotiation_engine import NegotiationEngine
from bazaar.services.pricing import (
    NATIONAL_FALLBACK_PRICE, MandiQuote, band_for_product, calculate_prices,
    compute_price_band, grade_multiplier, resolve_modal_price, state_average_price,
    validate_offer_against_floor
)
from bazaar.utils.exceptions import ValidationError

HOWRAH_ONION = MandiQuote(
    state="West Bengal", district="Howrah", market="Howrah Mandi", commodity="Onion", modal_price=2600
)


def _located(name="Red Onion", verified=False, state="West Bengal", district="Howrah", band=None):
    return Product(
        id="prod-loc", name=name, price=25.0, farmer_id="farmer-1", is_verified=verified,
        farmer_location=FarmerLocation(state=state, district=district), price_band=band,
    )


@pytest.mark.unit
class TestFormula:

    def test_grade_b_floor_and_target(self):
        floor, target = calculate_prices(2500, "B")
        assert floor == pytest.approx(21.0)
        assert target == pytest.approx(24.15)

    def test_grade_a_uses_full_modal(self):
        floor, target = calculate_prices(2000, "A")
        assert floor == pytest.approx(18.5)
        assert target == pytest.approx(21.275, abs=0.01)

    def test_grade_c(self):
        assert calculate_prices(1000, "c")[0] == pytest.approx(6.5)

    def test_floor_never_negative(self):
        assert calculate_prices(100, "B") == (0.0, 0.0)

    def test_grade_x_collapses_floor(self):
        assert calculate_prices(5000, "X") == (0.0, 0.0)

    @pytest.mark.parametrize("grade", [None, "", "Z", "premium"])
    def test_unknown_grade_uses_default(self, grade):
        assert grade_multiplier(grade) == 0.90


@pytest.mark.unit
class TestModalPrice:

    def test_district_quote_wins(self):
        modal = resolve_modal_price("Onion", "West Bengal", "Howrah", [HOWRAH_ONION])
        assert modal.per_quintal == 2600
        assert modal.price_source == "district-mandi"
        assert modal.is_verified is True
        assert modal.label == "Howrah Mandi, Howrah"
        assert modal.per_kg == 26.0

    def test_quote_from_other_district_is_ignored(self):
        modal = resolve_modal_price("Onion", "West Bengal", "Kolkata", [HOWRAH_ONION])
        assert modal.price_source == "state-average"
        assert modal.per_quintal == 2100
        assert modal.is_verified is False

    def test_zero_modal_quote_is_skipped(self):
        empty = MandiQuote(state="West Bengal", district="Howrah", market="X", commodity="Onion", modal_price=0)
        assert resolve_modal_price("Onion", "West Bengal", "Howrah", [empty]).price_source == "state-average"

    def test_partial_names_match(self):
        # "Bengal" finds West Bengal; "Red Onion" finds Onion
        assert state_average_price("Bengal", "Red Onion") == 2100

    def test_unknown_state_uses_default_table(self):
        assert state_average_price("Kerala", "Onion") == 2000

    def test_unknown_commodity_uses_state_default(self):
        assert state_average_price("Punjab", "Saffron") == 3000

    def test_no_location_is_national_fallback(self):
        modal = resolve_modal_price("Onion")
        assert modal.per_quintal == NATIONAL_FALLBACK_PRICE
        assert modal.price_source == "national-fallback"

    def test_compute_band(self):
        band = compute_price_band("Onion", "B", "West Bengal", "Howrah", [HOWRAH_ONION])
        assert band.floor_price == pytest.approx(21.9)
        assert band.target_price == pytest.approx(25.19, abs=0.01)
        assert band.price_source == "district-mandi"
        assert band.is_verified is True


@pytest.mark.unit
class TestProductBand:

    def test_attached_band_is_used_as_is(self):
        attached = PriceBand(floor_price=10.0, target_price=12.0, price_source="district-mandi", is_verified=True)
        assert band_for_product(_located(band=attached)) is attached

    def test_product_without_location_has_no_band(self):
        plain = Product(id="p", name="Wheat", price=30.0, farmer_id="farmer-1")
        assert band_for_product(plain) is None

    def test_verified_product_prices_as_grade_a(self):
        unverified = band_for_product(_located(verified=False))
        verified = band_for_product(_located(verified=True))
        # 2100/q state average: grade B 17.4, grade A 19.5
        assert unverified.floor_price == pytest.approx(17.4)
        assert verified.floor_price == pytest.approx(19.5)

    def test_validate_offer_against_floor(self):
        check = validate_offer_against_floor(18.0, 21.0)
        assert check.is_valid is False
        assert check.shortfall == 3.0
        assert "21.00/kg" in check.error_message
        assert validate_offer_against_floor(21.0, 21.0).is_valid is True


@pytest.mark.unit
class TestEngineUsesComputedBand:

    @pytest.mark.asyncio
    async def test_offer_below_computed_floor_is_blocked(self, fake_store, buyer):
        with pytest.raises(ValidationError) as exc_info:
            await NegotiationEngine(fake_store).create_negotiation(
                buyer, _located(), BuyerOffer(price=17.0, quantity=100)
            )
        assert exc_info.value.details["field"] == "offered_price"
        assert fake_store.calls_to("create_negotiation") == []

    @pytest.mark.asyncio
    async def test_negotiation_records_band_provenance(self, fake_store, buyer):
        engine = NegotiationEngine(fake_store, mandi_quotes=[HOWRAH_ONION])
        neg = await engine.create_negotiation(buyer, _located(), BuyerOffer(price=22.0, quantity=100))

        assert neg.floor_price == pytest.approx(21.9)
        assert neg.price_source == "district-mandi"
        assert neg.price_verified is True
        assert neg.quality_grade == "B"
