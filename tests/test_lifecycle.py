import os
import sys
from datetime import date, datetime
from decimal import Decimal

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from bakequote import create_app, db
from bakequote.errors import EmptyQuote, InvalidTransition
from bakequote.models import Baker, Customer, Order, Quote, QuoteEvent
from bakequote.payments.reconciliation import DepositConfig, record_payment
from bakequote.quotes import lifecycle
from bakequote.quotes.assembler import assemble_manual

AS_OF = datetime(2030, 3, 1, 12, 0)


def setup_app():
    app = create_app('development', overrides={'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:'})
    with app.app_context():
        db.drop_all()
        db.create_all()
    return app


def make_quote(items=None, **kw):
    baker = Baker(slug='sweet', business_name='Sweet Things')
    db.session.add(baker)
    db.session.commit()
    customer = Customer(baker_id=baker.id, name='Ana', email='ana@example.com')
    db.session.add(customer)
    db.session.commit()
    if items is None:
        items = [{'name': 'Cake', 'unit_price': 100}]
    return assemble_manual(baker, customer, items, title='Party', as_of=AS_OF,
                           tax_rate=kw.get('tax_rate', Decimal('0.08')),
                           event_date=kw.get('event_date'))


def test_sending_empty_quote_keeps_it_draft():
    app = setup_app()
    with app.app_context():
        quote = make_quote(items=[])
        with pytest.raises(EmptyQuote):
            lifecycle.send_quote(quote, as_of=AS_OF)
        assert quote.status == 'draft'
        assert quote.sent_at is None
        assert QuoteEvent.query.count() == 0


def test_send_accept_creates_order_and_events():
    app = setup_app()
    with app.app_context():
        quote = make_quote(event_date=date(2030, 4, 1))
        lifecycle.send_quote(quote, as_of=AS_OF)
        db.session.commit()
        assert quote.status == 'sent'
        assert quote.sent_at == AS_OF

        lifecycle.accept_quote(quote, as_of=AS_OF)
        db.session.commit()
        assert quote.status == 'approved'
        order = Order.query.filter_by(quote_id=quote.id).one()
        assert order.amount == quote.total
        assert order.event_date == date(2030, 4, 1)
        assert order.fulfillment_status == 'booked'

        # accepting again is a no-op, not a second order
        lifecycle.accept_quote(quote, as_of=AS_OF)
        db.session.commit()
        assert Order.query.count() == 1
        assert [e.kind for e in QuoteEvent.query.order_by(QuoteEvent.id)] == [
            'quote_sent', 'quote_accepted']


def test_terminal_states_refuse_transitions():
    app = setup_app()
    with app.app_context():
        quote = make_quote()
        with pytest.raises(InvalidTransition):
            lifecycle.accept_quote(quote, as_of=AS_OF)
        with pytest.raises(InvalidTransition):
            lifecycle.revert_to_draft(quote)

        lifecycle.send_quote(quote, as_of=AS_OF)
        lifecycle.reject_quote(quote, as_of=AS_OF)
        db.session.commit()
        assert quote.status == 'rejected'
        lifecycle.reject_quote(quote, as_of=AS_OF)
        for action in (lambda q: lifecycle.accept_quote(q, as_of=AS_OF),
                       lambda q: lifecycle.send_quote(q, as_of=AS_OF),
                       lifecycle.revert_to_draft):
            with pytest.raises(InvalidTransition):
                action(quote)
        assert quote.status == 'rejected'
        assert Order.query.count() == 0


def test_revert_allows_editing_again():
    app = setup_app()
    with app.app_context():
        quote = make_quote()
        lifecycle.send_quote(quote, as_of=AS_OF)
        with pytest.raises(InvalidTransition):
            lifecycle.replace_items(quote, [{'name': 'Bigger cake', 'unit_price': 150}])
        with pytest.raises(InvalidTransition):
            lifecycle.update_details(quote, {'tax_rate': '0.1'})
        lifecycle.update_details(quote, {'title': 'Renamed'})
        assert quote.title == 'Renamed'

        lifecycle.revert_to_draft(quote)
        assert quote.status == 'draft'
        assert quote.sent_at is None
        lifecycle.replace_items(quote, [{'name': 'Bigger cake', 'unit_price': 150}])
        lifecycle.update_details(quote, {'tax_rate': '0.1'})
        db.session.commit()
        assert quote.subtotal == Decimal('150')
        assert quote.tax_amount == Decimal('15')
        assert quote.total == Decimal('165')


def test_revert_refused_once_money_is_taken():
    app = setup_app()
    with app.app_context():
        quote = make_quote()
        lifecycle.send_quote(quote, as_of=AS_OF)
        record_payment(quote, external_id='pi_dep', amount='50', payment_type='deposit',
                       config=DepositConfig('percentage', Decimal(50)), as_of=AS_OF)
        db.session.commit()

        with pytest.raises(InvalidTransition) as info:
            lifecycle.revert_to_draft(quote)
        assert 'quote has payments' in str(info.value)
        assert quote.status == 'sent'
        assert quote.sent_at == AS_OF
        with pytest.raises(InvalidTransition):
            lifecycle.replace_items(quote, [{'name': 'Cupcake', 'unit_price': 5}])
        assert quote.total >= quote.amount_paid



def test_archive_is_independent_of_status():
    app = setup_app()
    with app.app_context():
        quote = make_quote()
        lifecycle.send_quote(quote, as_of=AS_OF)
        lifecycle.archive_quote(quote, as_of=AS_OF)
        db.session.commit()
        assert quote.is_archived
        assert quote.status == 'sent'
        lifecycle.accept_quote(quote, as_of=AS_OF)
        lifecycle.unarchive_quote(quote)
        db.session.commit()
        assert not quote.is_archived
        assert quote.status == 'approved'


def test_delete_rules():
    app = setup_app()
    with app.app_context():
        quote = make_quote()
        lifecycle.send_quote(quote, as_of=AS_OF)
        lifecycle.accept_quote(quote, as_of=AS_OF)
        db.session.commit()
        with pytest.raises(InvalidTransition):
            lifecycle.delete_quote(quote)

        other = assemble_manual(quote.baker, quote.customer, [{'name': 'Pie', 'unit_price': 20}],
                                title='Pie', as_of=AS_OF)
        lifecycle.delete_quote(other)
        db.session.commit()
        assert Quote.query.count() == 1


def test_quote_routes_walkthrough():
    app = setup_app()
    with app.app_context():
        baker = Baker(slug='sweet', business_name='Sweet Things')
        db.session.add(baker)
        db.session.commit()
        headers = {'X-Baker-Id': str(baker.id)}

    client = app.test_client()
    resp = client.post('/quotes/', headers=headers, json={
        'title': 'Anniversary',
        'customer': {'name': 'Ana', 'email': 'ana@example.com'},
        'event_date': '2030-06-01',
        'build': {'tiers': [{'size': '8-round', 'shape': 'round', 'flavor': 'vanilla',
                             'frosting': 'buttercream'}]},
    })
    assert resp.status_code == 201
    quote = resp.get_json()['quote']
    assert quote['number'].endswith('-001')
    assert Decimal(quote['tax_rate']) == Decimal('0.08')
    qid = quote['id']

    resp = client.post('/quotes/', headers=headers, json={
        'title': 'Empty', 'customer_id': quote['customer_id'], 'items': []})
    empty_id = resp.get_json()['quote']['id']
    resp = client.post(f'/quotes/{empty_id}/send', headers=headers)
    assert resp.status_code == 409
    assert resp.get_json()['error'] == 'empty_quote'

    assert client.get(f'/public/quotes/{qid}').status_code == 404
    assert client.post(f'/quotes/{qid}/send', headers=headers).status_code == 200
    assert client.get(f'/public/quotes/{qid}').status_code == 200

    resp = client.patch(f'/quotes/{qid}', headers=headers, json={'tax_rate': '0.1'})
    assert resp.status_code == 409
    assert resp.get_json()['error'] == 'invalid_transition'

    resp = client.post(f'/public/quotes/{qid}/accept')
    assert resp.get_json()['quote']['status'] == 'approved'
    assert client.post(f'/public/quotes/{qid}/decline').status_code == 409
    assert client.delete(f'/quotes/{qid}', headers=headers).status_code == 409

    resp = client.post(f'/quotes/{qid}/duplicate', headers=headers)
    assert resp.status_code == 201
    assert resp.get_json()['quote']['status'] == 'draft'

    listed = client.get('/quotes/?status=approved', headers=headers).get_json()['quotes']
    assert [q['id'] for q in listed] == [qid]
    assert client.get(f'/quotes/{qid}', headers={'X-Baker-Id': '999'}).status_code == 401


def test_bad_money_input_is_refused_before_anything_is_saved():
    app = setup_app()
    with app.app_context():
        baker = Baker(slug='sweet', business_name='Sweet Things')
        db.session.add(baker)
        db.session.commit()
        headers = {'X-Baker-Id': str(baker.id)}

    client = app.test_client()
    customer = {'name': 'Ana', 'email': 'ana@example.com'}
    bad = [
        {'items': [{'name': 'Cake', 'unit_price': 'abc'}]},
        {'items': [{'name': 'Cake', 'unit_price': '-40'}]},
        {'items': [{'name': 'Cake', 'unit_price': 'NaN'}]},
        {'items': [{'name': 'Cake', 'unit_price': '10', 'quantity': 'lots'}]},
        {'items': [{'name': 'Cake', 'unit_price': '10'}], 'tax_rate': '1.5'},
        {'items': [{'name': 'Cake', 'unit_price': '10'}], 'tax_rate': '-0.1'},
        {'items': [{'name': 'Cake', 'unit_price': '10'}], 'tax_rate': 'abc'},
    ]
    for body in bad:
        resp = client.post('/quotes/', headers=headers,
                           json=dict(body, title='Party', customer=customer))
        assert resp.status_code == 400, body
        assert resp.get_json()['error'] == 'invalid_item'

    with app.app_context():
        assert Customer.query.count() == 0
        assert Quote.query.count() == 0
        assert db.session.get(Baker, baker.id).quote_sequence == 0

    resp = client.post('/quotes/', headers=headers, json={
        'title': 'Party', 'customer': customer,
        'items': [{'name': 'Cake', 'unit_price': '10'}]})
    assert resp.status_code == 201
    qid = resp.get_json()['quote']['id']
    assert resp.get_json()['quote']['number'].endswith('-001')
    with app.app_context():
        assert Customer.query.count() == 1

    resp = client.patch(f'/quotes/{qid}', headers=headers, json={'tax_rate': 'abc'})
    assert resp.status_code == 400
    resp = client.patch(f'/quotes/{qid}', headers=headers, json={'tax_rate': '2'})
    assert resp.status_code == 400
    with app.app_context():
        assert db.session.get(Quote, qid).tax_rate == Decimal('0.08')
