import os
import sys
import random
import threading
from datetime import datetime
from decimal import Decimal

import pytest
from sqlalchemy import update

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from bakequote import create_app, db
from bakequote.errors import AlreadyPaid, InvalidTransition, OverpaymentAttempt
from bakequote.models import Baker, Customer, Payment, Quote
from bakequote.payments.reconciliation import (
    DepositConfig,
    payment_status_for,
    record_payment,
    request_payment,
    required_deposit,
)
from bakequote.quotes import lifecycle
from bakequote.quotes.assembler import assemble_manual

AS_OF = datetime(2030, 3, 1, 12, 0)
HALF = DepositConfig('percentage', Decimal(50), Decimal(0))


def setup_app(uri='sqlite:///:memory:'):
    app = create_app('development', overrides={'SQLALCHEMY_DATABASE_URI': uri})
    with app.app_context():
        db.drop_all()
        db.create_all()
    return app


def sent_quote(total='300', deposit_type='percentage', send=True, slug='sweet'):
    baker = Baker(slug=slug, business_name='Sweet Things', deposit_type=deposit_type,
                  deposit_percentage=50, deposit_fixed_amount=Decimal('100'))
    db.session.add(baker)
    db.session.commit()
    customer = Customer(baker_id=baker.id, name='Ana', email='ana@example.com')
    db.session.add(customer)
    db.session.commit()
    quote = assemble_manual(baker, customer, [{'name': 'Cake', 'unit_price': total}],
                            title='Party', as_of=AS_OF, tax_rate=Decimal('0'))
    if send:
        lifecycle.send_quote(quote, as_of=AS_OF)
        db.session.commit()
    return quote


def pay(quote, external_id, amount=None, **kw):
    kw.setdefault('config', HALF)
    return record_payment(quote, external_id=external_id, amount=amount, as_of=AS_OF, **kw)


def test_required_deposit():
    assert required_deposit(Decimal('300'), HALF) == Decimal('150.00')
    assert required_deposit(Decimal('99.99'), HALF) == Decimal('50.00')
    fixed = DepositConfig('fixed', Decimal(50), Decimal('500'))
    assert required_deposit(Decimal('300'), fixed) == Decimal('300')
    assert required_deposit(Decimal('300'), DepositConfig('full')) == 0


def test_payment_status_for():
    assert payment_status_for(0, 300, 150) == 'unpaid'
    assert payment_status_for(149, 300, 150) == 'unpaid'
    assert payment_status_for(150, 300, 150) == 'deposit_paid'
    assert payment_status_for(Decimal('299.99'), 300, 150) == 'paid'
    assert payment_status_for(Decimal('299.98'), 300, 0) == 'unpaid'


def test_deposit_then_balance():
    app = setup_app()
    with app.app_context():
        quote = sent_quote()
        pay(quote, 'pi_1', '150', payment_type='deposit')
        db.session.commit()
        assert quote.payment_status == 'deposit_paid'
        assert quote.amount_paid == Decimal('150')
        assert quote.paid_at is None

        pay(quote, 'pi_2', '150', payment_type='remaining')
        db.session.commit()
        assert quote.payment_status == 'paid'
        assert quote.amount_paid == Decimal('300')
        assert quote.paid_at == AS_OF

        with pytest.raises(AlreadyPaid):
            pay(quote, 'pi_3', '1')


def test_replayed_notification_applies_once():
    app = setup_app()
    with app.app_context():
        quote = sent_quote()
        for _ in range(3):
            pay(quote, 'pi_1', '150', payment_type='deposit')
            db.session.commit()
        assert quote.amount_paid == Decimal('150')
        assert Payment.query.filter_by(external_id='pi_1').count() == 1


def test_failed_and_pending_do_not_count():
    app = setup_app()
    with app.app_context():
        quote = sent_quote()
        pay(quote, 'pi_f', '150', status='failed')
        pay(quote, 'pi_p', '150', status='pending')
        db.session.commit()
        assert quote.amount_paid == 0
        assert quote.payment_status == 'unpaid'
        assert {p.status for p in quote.payments} == {'failed', 'pending'}

        # the pending one later settles
        pay(quote, 'pi_p', status='succeeded')
        db.session.commit()
        assert quote.amount_paid == Decimal('150')


def test_overpayment_and_bad_states_rejected():
    app = setup_app()
    with app.app_context():
        quote = sent_quote()
        with pytest.raises(OverpaymentAttempt):
            pay(quote, 'pi_big', '300.02')
        db.session.rollback()
        with pytest.raises(ValueError):
            pay(quote, 'pi_zero', '0')
        db.session.rollback()
        with pytest.raises(ValueError):
            pay(quote, 'pi_x', '10', status='refunded')
        db.session.rollback()

        draft = sent_quote(send=False, slug='other')
        with pytest.raises(InvalidTransition):
            pay(draft, 'pi_d', '10')
        db.session.rollback()
        pay(quote, 'pi_ok', '10')
        db.session.commit()
        with pytest.raises(InvalidTransition):
            pay(draft, 'pi_ok', '10')


def test_overpayment_is_capped_at_exact_balance():
    app = setup_app()
    with app.app_context():
        quote = sent_quote()
        with pytest.raises(OverpaymentAttempt):
            pay(quote, 'pi_over', '300.01')
        db.session.rollback()
        pay(quote, 'pi_dep', '150', payment_type='deposit')
        db.session.commit()
        with pytest.raises(OverpaymentAttempt):
            pay(quote, 'pi_rest', '150.01', payment_type='remaining')
        db.session.rollback()
        assert quote.amount_paid == Decimal('150')
        assert quote.amount_paid <= quote.total


def test_settlement_rechecks_total_in_the_database():
    app = setup_app()
    with app.app_context():
        quote = sent_quote()
        assert quote.amount_paid == 0
        # another worker settles 200 behind this session's back
        db.session.execute(
            update(Quote).where(Quote.id == quote.id).values(amount_paid=Decimal('200'))
            .execution_options(synchronize_session=False)
        )
        assert quote.amount_paid == 0

        with pytest.raises(OverpaymentAttempt) as info:
            pay(quote, 'pi_late', '200')
        assert info.value.outstanding == Decimal('100')
        assert quote.amount_paid == Decimal('200')
        late = Payment.query.filter_by(external_id='pi_late').one()
        assert late.status == 'pending'
        assert late.settled_at is None



def test_requested_amounts():
    app = setup_app()
    with app.app_context():
        quote = sent_quote()
        deposit = request_payment(quote, 'deposit', HALF, as_of=AS_OF)
        assert deposit.amount == Decimal('150')
        assert deposit.status == 'pending'
        assert deposit.external_id.startswith('pay_')
        pay(quote, deposit.external_id)
        db.session.commit()

        with pytest.raises(AlreadyPaid):
            request_payment(quote, 'deposit', HALF, as_of=AS_OF)
        with pytest.raises(InvalidTransition):
            request_payment(quote, 'full', HALF, as_of=AS_OF)
        rest = request_payment(quote, 'remaining', HALF, as_of=AS_OF,
                               platform_fee_rate=Decimal('0.029'))
        assert rest.amount == Decimal('150')
        assert rest.platform_fee == Decimal('4.35')


def test_fixed_deposit_capped_and_full_only_bakers():
    app = setup_app()
    with app.app_context():
        quote = sent_quote(total='80', deposit_type='fixed')
        config = DepositConfig.from_baker(quote.baker)
        assert request_payment(quote, 'deposit', config, as_of=AS_OF).amount == Decimal('80')

        full_only = sent_quote(deposit_type='full', slug='other')
        with pytest.raises(InvalidTransition):
            request_payment(full_only, 'deposit', DepositConfig.from_baker(full_only.baker),
                            as_of=AS_OF)


def test_amount_paid_matches_succeeded_payments():
    app = setup_app()
    rng = random.Random(7)
    with app.app_context():
        for n in range(25):
            quote = sent_quote(total=str(rng.randint(50, 400)), slug=f'b{n}')
            ids = [f'pi_{n}_{i}' for i in range(4)]
            for _ in range(10):
                ext = rng.choice(ids)
                amount = Decimal(rng.randint(1, 150))
                status = rng.choice(['succeeded', 'succeeded', 'failed', 'pending'])
                try:
                    pay(quote, ext, amount, status=status)
                    db.session.commit()
                except (AlreadyPaid, OverpaymentAttempt):
                    db.session.rollback()
            settled = sum((p.amount for p in quote.payments if p.status == 'succeeded'),
                          Decimal(0))
            assert quote.amount_paid == settled
            assert quote.amount_paid <= quote.total + Decimal('0.01')
            deposit = required_deposit(quote.total, HALF)
            expected = payment_status_for(quote.amount_paid, quote.total, deposit)
            assert quote.payment_status == expected


def test_concurrent_duplicate_webhooks_apply_once(tmp_path):
    app = setup_app(f"sqlite:///{tmp_path / 'pay.db'}")
    with app.app_context():
        quote = sent_quote()
        payment = request_payment(quote, 'deposit', HALF, as_of=AS_OF)
        db.session.commit()
        quote_id, external_id = quote.id, payment.external_id

    errors = []

    def deliver():
        try:
            with app.app_context():
                q = db.session.get(Quote, quote_id)
                pay(q, external_id)
                db.session.commit()
        except AlreadyPaid:
            pass
        except Exception as e:  # surfaced by the assertion below
            errors.append(e)

    threads = [threading.Thread(target=deliver) for _ in range(5)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    with app.app_context():
        q = db.session.get(Quote, quote_id)
        assert q.amount_paid == Decimal('150')
        assert q.payment_status == 'deposit_paid'


def test_concurrent_distinct_payments_never_overshoot(tmp_path):
    app = setup_app(f"sqlite:///{tmp_path / 'pay.db'}")
    with app.app_context():
        quote = sent_quote()
        for ext in ('pi_a', 'pi_b'):
            pay(quote, ext, '200', status='pending')
        db.session.commit()
        quote_id = quote.id

    applied, refused, errors = [], [], []

    def deliver(external_id):
        try:
            with app.app_context():
                q = db.session.get(Quote, quote_id)
                pay(q, external_id)
                db.session.commit()
                applied.append(external_id)
        except OverpaymentAttempt:
            refused.append(external_id)
        except Exception as e:  # surfaced by the assertion below
            errors.append(e)

    threads = [threading.Thread(target=deliver, args=(ext,)) for ext in ('pi_a', 'pi_b')]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert len(applied) == 1 and len(refused) == 1
    with app.app_context():
        q = db.session.get(Quote, quote_id)
        assert q.amount_paid == Decimal('200')
        assert q.amount_paid <= q.total
        assert q.payment_status == 'deposit_paid'
        loser = Payment.query.filter_by(external_id=refused[0]).one()
        assert loser.status == 'pending'



def test_payment_routes():
    app = setup_app()
    with app.app_context():
        quote = sent_quote()
        quote_id = quote.id
        headers = {'X-Baker-Id': str(quote.baker_id)}

    client = app.test_client()
    resp = client.post(f'/public/quotes/{quote_id}/pay', json={'type': 'deposit'})
    assert resp.status_code == 201
    external_id = resp.get_json()['payment']['external_id']

    for _ in range(2):
        resp = client.post('/payments/webhook',
                           json={'external_id': external_id, 'status': 'succeeded'})
        assert resp.status_code == 200
        assert resp.get_json()['payment_status'] == 'deposit_paid'

    resp = client.post(f'/quotes/{quote_id}/payments', headers=headers,
                       json={'amount': '500', 'type': 'remaining'})
    assert resp.status_code == 409
    assert resp.get_json()['error'] == 'overpayment'

    resp = client.post(f'/quotes/{quote_id}/payments', headers=headers,
                       json={'amount': '150', 'type': 'remaining', 'reference': 'zelle-1'})
    assert resp.status_code == 201
    assert resp.get_json()['quote']['payment_status'] == 'paid'

    listing = client.get(f'/quotes/{quote_id}/payments', headers=headers).get_json()
    assert [p['status'] for p in listing['payments']] == ['succeeded', 'succeeded']
    assert Decimal(listing['balance_due']) == 0


def test_webhook_secret_enforced():
    app = setup_app()
    app.config['PAYMENT_WEBHOOK_SECRET'] = 's3cret'
    client = app.test_client()
    assert client.post('/payments/webhook', json={'external_id': 'x'}).status_code == 403
    resp = client.post('/payments/webhook', json={'external_id': 'x'},
                       headers={'X-Webhook-Secret': 's3cret'})
    assert resp.status_code == 404
