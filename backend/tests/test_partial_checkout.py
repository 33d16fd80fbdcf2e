"""
Partial checkout tests.

Verifies:
- Payable items move to a new pending order, gated ones stay behind
- A second call on the same order fails with NoPayableItems, no duplicate split
- Cancelling merges the split back into the cart and frees its stock
"""

import pytest

from medhub.errors import ConflictError, NoPayableItemsError, NotFoundError
from medhub.models import Order, ProviderOffering
from medhub.models.orders import (
    ORDER_STATUS_CART,
    ORDER_STATUS_PARTIALLY_COMPLETED,
    ORDER_STATUS_PENDING,
    PAYMENT_STATUS_PAID,
)
from medhub.services import cart_service, checkout_service


def _mixed_cart(catalog):
    _line, guest_id = cart_service.add_item(catalog['paracetamol'].id, catalog['pharmacy'].id, 3)
    cart_service.add_item(catalog['amoxicillin'].id, catalog['pharmacy'].id, 1, guest_id=guest_id)
    return guest_id, cart_service.get_open_cart(guest_id).id


def _stock(db_session, provider, item):
    db_session.expire_all()
    return db_session.get(ProviderOffering, (provider.id, item.id)).stock


class TestPartialCheckout:

    def test_moves_payable_items(self, db_session, catalog):
        guest_id, cart_id = _mixed_cart(catalog)

        result = checkout_service.partial_checkout(cart_id, guest_id)

        split = result['order']
        assert split['status'] == ORDER_STATUS_PENDING
        assert split['split_from_order_id'] == cart_id
        assert [i['item_id'] for i in split['items']] == [catalog['paracetamol'].id]
        assert split['total_price_kobo'] == 150_000
        assert split['provider_id'] == catalog['pharmacy'].id
        assert result['remaining_order_id'] == cart_id

        db_session.expire_all()
        remaining = db_session.get(Order, cart_id)
        assert remaining.status == ORDER_STATUS_PARTIALLY_COMPLETED
        assert [line.item_id for line in remaining.items] == [catalog['amoxicillin'].id]
        assert remaining.total_price_kobo == 250_000

    def test_reserves_stock_for_split(self, db_session, catalog):
        guest_id, cart_id = _mixed_cart(catalog)

        checkout_service.partial_checkout(cart_id, guest_id)

        assert _stock(db_session, catalog['pharmacy'], catalog['paracetamol']) == 7

    def test_second_call_has_nothing_payable(self, db_session, catalog):
        guest_id, cart_id = _mixed_cart(catalog)
        checkout_service.partial_checkout(cart_id, guest_id)

        with pytest.raises(NoPayableItemsError):
            checkout_service.partial_checkout(cart_id, guest_id)

        assert db_session.query(Order).filter_by(split_from_order_id=cart_id).count() == 1

    def test_fully_payable_order_is_emptied_and_deleted(self, db_session, catalog):
        _line, guest_id = cart_service.add_item(catalog['paracetamol'].id, catalog['pharmacy'].id, 1)
        cart_id = cart_service.get_open_cart(guest_id).id

        result = checkout_service.partial_checkout(cart_id, guest_id)

        assert result['remaining_order_id'] is None
        db_session.expire_all()
        assert db_session.get(Order, cart_id) is None

        with pytest.raises(NoPayableItemsError):
            checkout_service.partial_checkout(cart_id, guest_id)

    def test_only_gated_items(self, db_session, catalog):
        _line, guest_id = cart_service.add_item(catalog['amoxicillin'].id, catalog['pharmacy'].id, 1)
        cart_id = cart_service.get_open_cart(guest_id).id

        with pytest.raises(NoPayableItemsError):
            checkout_service.partial_checkout(cart_id, guest_id)

    def test_unknown_order(self, db_session, catalog):
        with pytest.raises(NotFoundError):
            checkout_service.partial_checkout(424242, "guest")


class TestCancelPartialCheckout:

    def test_merges_back_into_cart(self, db_session, catalog):
        guest_id, cart_id = _mixed_cart(catalog)
        split = checkout_service.partial_checkout(cart_id, guest_id)['order']
        cart_service.get_or_create_cart(guest_id, reopen=False)
        db_session.commit()
        cart_service.add_item(catalog['paracetamol'].id, catalog['pharmacy'].id, 1, guest_id=guest_id)

        cart = checkout_service.cancel_partial_checkout(split['id'], guest_id)

        items = cart['providers'][0]['items']
        assert [(i['item_id'], i['quantity']) for i in items] == [(catalog['paracetamol'].id, 4)]
        assert cart['total_price_kobo'] == 200_000
        db_session.expire_all()
        assert db_session.get(Order, split['id']) is None
        assert _stock(db_session, catalog['pharmacy'], catalog['paracetamol']) == 10

    def test_into_fresh_cart(self, db_session, catalog):
        guest_id, cart_id = _mixed_cart(catalog)
        split = checkout_service.partial_checkout(cart_id, guest_id)['order']

        cart = checkout_service.cancel_partial_checkout(split['id'], guest_id)

        assert cart['order_id'] not in (None, cart_id)
        db_session.expire_all()
        assert db_session.get(Order, cart['order_id']).status == ORDER_STATUS_CART

    def test_paid_order_cannot_return(self, db_session, catalog):
        guest_id, cart_id = _mixed_cart(catalog)
        split = checkout_service.partial_checkout(cart_id, guest_id)['order']
        order = db_session.get(Order, split['id'])
        order.payment_status = PAYMENT_STATUS_PAID
        db_session.commit()

        with pytest.raises(ConflictError):
            checkout_service.cancel_partial_checkout(split['id'], guest_id)

    def test_other_guest(self, db_session, catalog):
        guest_id, cart_id = _mixed_cart(catalog)
        split = checkout_service.partial_checkout(cart_id, guest_id)['order']

        with pytest.raises(NotFoundError):
            checkout_service.cancel_partial_checkout(split['id'], "someone-else")
