"""
Request validation and location reference tests.
"""

from datetime import date, datetime

import pytest

from medhub.location import haversine_km, validate_location
from medhub.validation import (
    Field,
    ValidationError,
    is_valid_payment_reference,
    is_valid_tracking_code,
    normalize_phone,
    require_one_of,
    validate_price_kobo,
    validate_request,
)


CART_FIELDS = {
    'item_id': Field(kind="int", required=True, min_value=1),
    'quantity': Field(kind="int", required=True, min_value=1, max_value=1000),
    'email': Field(kind="email"),
    'phone': Field(kind="phone"),
    'method': Field(kind="enum", choices=("pickup", "delivery")),
    'slot': Field(kind="datetime"),
    'day': Field(kind="date"),
    'latitude': Field(kind="float", min_value=-90, max_value=90),
    'urgent': Field(kind="bool"),
}


class TestValidateRequest:

    def test_normalizes_values(self):
        cleaned = validate_request(
            {
                'item_id': "7",
                'quantity': 2,
                'email': " Ada@Example.COM ",
                'phone': "0801 234 5678",
                'method': "pickup",
                'slot': "2026-03-03T10:00:00Z",
                'day': "2026-03-03",
                'latitude': "6.6142",
                'urgent': "yes",
            },
            CART_FIELDS,
        )

        assert cleaned['item_id'] == 7
        assert cleaned['email'] == "ada@example.com"
        assert cleaned['phone'] == "+2348012345678"
        assert cleaned['slot'] == datetime(2026, 3, 3, 10, 0)
        assert cleaned['day'] == date(2026, 3, 3)
        assert cleaned['latitude'] == pytest.approx(6.6142)
        assert cleaned['urgent'] is True

    def test_blank_optionals_become_none(self):
        cleaned = validate_request({'item_id': 1, 'quantity': 1, 'email': "  "}, CART_FIELDS)

        assert cleaned['email'] is None
        assert cleaned['method'] is None

    def test_collects_every_error(self):
        with pytest.raises(ValidationError) as exc:
            validate_request({'quantity': 0, 'email': "nope", 'method': "drone"}, CART_FIELDS)

        assert set(exc.value.errors) == {'item_id', 'quantity', 'email', 'method'}
        assert exc.value.errors['item_id'] == "item_id is required"
        assert exc.value.to_dict()['details']['fields'] == exc.value.errors

    @pytest.mark.parametrize("value", [True, 1.5, "2.0", "1e3", "abc"])
    def test_rejects_non_integers(self, value):
        with pytest.raises(ValidationError):
            validate_request({'item_id': value, 'quantity': 1}, CART_FIELDS)

    def test_float_bounds(self):
        with pytest.raises(ValidationError):
            validate_request({'item_id': 1, 'quantity': 1, 'latitude': 91}, CART_FIELDS)

    def test_non_object_payload(self):
        with pytest.raises(ValidationError):
            validate_request(["not", "a", "dict"], CART_FIELDS)

    def test_require_one_of(self):
        require_one_of({'email': None, 'phone': "+2348012345678"}, 'email', 'phone')
        with pytest.raises(ValidationError):
            require_one_of({'email': None, 'phone': None}, 'email', 'phone')

    def test_price_bounds(self):
        validate_price_kobo(0)
        with pytest.raises(ValidationError):
            validate_price_kobo(-1)
        with pytest.raises(ValidationError):
            validate_price_kobo(1_000_000_000)


class TestIdentifiers:

    @pytest.mark.parametrize("raw,expected", [
        ("08012345678", "+2348012345678"),
        ("2348012345678", "+2348012345678"),
        ("+234 801-234-5678", "+2348012345678"),
        (None, None),
    ])
    def test_normalize_phone(self, raw, expected):
        assert normalize_phone(raw) == expected

    def test_payment_reference_format(self):
        assert is_valid_payment_reference("order_0123456789abcdef")
        assert is_valid_payment_reference("session_17000_abcdef")
        assert not is_valid_payment_reference("txn_0123456789")
        assert not is_valid_payment_reference("order_")

    def test_tracking_code_format(self):
        assert is_valid_tracking_code("TRK-SESSION-1700000000000123-1700000000999")
        assert not is_valid_tracking_code("TRK-SESSION-abc")
        assert not is_valid_tracking_code("")


class TestLocation:

    def test_canonical_names_returned(self):
        location = validate_location("lagos", "IKEJA", "alausa", 6.61425, 3.35805)

        assert location == {
            'state': "Lagos",
            'lga': "Ikeja",
            'ward': "Alausa",
            'latitude': 6.6142,
            'longitude': 3.3581,
        }

    @pytest.mark.parametrize("args,message", [
        (("Atlantis", "Ikeja", "Alausa", 6.6142, 3.3581), "Invalid state"),
        (("Lagos", "Nowhere", "Alausa", 6.6142, 3.3581), "Invalid LGA for selected state"),
        (("Lagos", "Ikeja", "Lekki", 6.6142, 3.3581), "Invalid ward for selected LGA"),
        (("Lagos", "Ikeja", "Alausa", 6.7, 3.3581), "Coordinates do not match selected ward"),
    ])
    def test_rejections(self, args, message):
        with pytest.raises(ValidationError) as exc:
            validate_location(*args)
        assert exc.value.message == message

    def test_haversine(self):
        assert haversine_km(6.6142, 3.3581, 6.6142, 3.3581) == 0
        # Alausa to Lekki is roughly 20 km
        assert 18 < haversine_km(6.6142, 3.3581, 6.4474, 3.4726) < 24
