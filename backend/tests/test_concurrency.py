# Overview: Threaded concurrency coverage against a file-backed SQLite database.

"""
Concurrency tests

Each test builds its own app on a temporary SQLite file so worker threads
get real, separate connections. Workers start together behind a barrier.
"""

import threading

import pytest

from admission_engine import create_app
from admission_engine.errors import CreditStateError, MovementAlreadyReversedError
from admission_engine.extensions import db
from admission_engine.models import CreditLog, Customer, FinancialMovement, Organization
from admission_engine.services import credit_service, movement_service, reversal_service, sales_service
from conftest import APPROVER_ID, item


def _build_app(db_path, **overrides):
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{db_path}",
        'RETRY_ATTEMPTS': 5,
        'RETRY_BACKOFF_BASE': 0.01,
        **overrides,
    })
    with app.app_context():
        db.create_all()
    return app


def _teardown_app(app):
    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


def _seed_tenant(app):
    with app.app_context():
        org = Organization(name="Concurrency Org", code="CONC")
        db.session.add(org)
        db.session.commit()
        customer = Customer(org_id=org.id, name="Cliente", credit_limit_cents=100000)
        db.session.add(customer)
        db.session.commit()
        return org.id, customer.id


@pytest.fixture
def file_app(tmp_path):
    app = _build_app(tmp_path / "concurrency.db")
    yield app
    _teardown_app(app)


@pytest.fixture
def serialized_app(tmp_path):
    app = _build_app(tmp_path / "serialized.db", SERIALIZE_CREDIT_ADMISSION=True)
    yield app
    _teardown_app(app)


@pytest.fixture
def tenant(file_app):
    return _seed_tenant(file_app)


def _run_concurrently(app, targets):
    results = []
    lock = threading.Lock()
    barrier = threading.Barrier(len(targets))

    def worker(target):
        with app.app_context():
            try:
                barrier.wait()
                value = target()
                with lock:
                    results.append(("ok", value))
            except Exception as exc:
                with lock:
                    results.append(("error", exc))
            finally:
                db.session.remove()

    threads = [threading.Thread(target=worker, args=(t,)) for t in targets]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return results


def test_concurrent_credit_decisions_single_winner(file_app, tenant):
    org_id, customer_id = tenant
    with file_app.app_context():
        sale, _ = sales_service.create_sale(org_id, [item(10000)], payment_method="boleto", customer_id=customer_id)
        sale_id = sale.id

    results = _run_concurrently(file_app, [
        lambda: credit_service.approve_credit(sale_id, APPROVER_ID) and "approved",
        lambda: credit_service.deny_credit(sale_id, APPROVER_ID + 1, "Risco") and "denied",
    ])

    successes = [value for status, value in results if status == "ok"]
    failures = [value for status, value in results if status == "error"]
    assert len(successes) == 1
    assert len(failures) == 1
    assert isinstance(failures[0], CreditStateError)

    with file_app.app_context():
        assert db.session.query(CreditLog).filter_by(sale_id=sale_id).count() == 1
        final_status = sales_service.get_sale(sale_id).credit_status
        assert final_status == successes[0]


def test_concurrent_reversals_single_compensation(file_app, tenant):
    org_id, _ = tenant
    with file_app.app_context():
        movement = movement_service.post_movement(org_id=org_id, account_id=1, direction="in", value_cents=5000)
        movement_id = movement.id

    results = _run_concurrently(file_app, [
        lambda: reversal_service.reverse_movement(movement_id, "Erro A", 1),
        lambda: reversal_service.reverse_movement(movement_id, "Erro B", 2),
    ])

    successes = [value for status, value in results if status == "ok"]
    failures = [value for status, value in results if status == "error"]
    assert len(successes) == 1
    assert len(failures) == 1
    assert isinstance(failures[0], MovementAlreadyReversedError)

    with file_app.app_context():
        assert db.session.query(FinancialMovement).filter_by(reversal_of_id=movement_id).count() == 1
        assert movement_service.get_account_balance(1, org_id) == 0


def test_concurrent_checkouts_get_unique_document_numbers(file_app, tenant):
    org_id, _ = tenant

    results = _run_concurrently(file_app, [
        (lambda: sales_service.create_sale(org_id, [item(1000)], payment_method="PIX")[0].document_number)
        for _ in range(5)
    ])

    numbers = [value for status, value in results if status == "ok"]
    assert [value for status, value in results if status == "error"] == []
    assert len(numbers) == 5
    assert len(set(numbers)) == 5


def _credit_checkouts(org_id, customer_id, count, total_cents):
    return [
        (lambda: sales_service.create_sale(
            org_id, [item(total_cents)], payment_method="boleto", customer_id=customer_id
        )[1].allowed)
        for _ in range(count)
    ]


def test_serialized_admission_admits_at_most_one_over_limit(serialized_app):
    org_id, customer_id = _seed_tenant(serialized_app)

    # R$ 600,00 each against a R$ 1.000,00 limit: only one fits
    results = _run_concurrently(serialized_app, _credit_checkouts(org_id, customer_id, 4, 60000))

    assert [value for status, value in results if status == "error"] == []
    admitted = [value for status, value in results if status == "ok"]
    assert len(admitted) == 4
    assert admitted.count(True) == 1

    with serialized_app.app_context():
        info = credit_service.get_customer_credit_info(customer_id, org_id)
        assert info.limit_used == 240000


def test_default_admission_tolerates_read_then_decide_race(file_app, tenant):
    """
    Without SERIALIZE_CREDIT_ADMISSION each checkout reads the customer's
    debt and decides without a customer lock, so concurrent checkouts may
    all pass the limit check. Every sale is still recorded under review.
    """
    org_id, customer_id = tenant

    results = _run_concurrently(file_app, _credit_checkouts(org_id, customer_id, 4, 60000))

    assert [value for status, value in results if status == "error"] == []
    admitted = [value for status, value in results if status == "ok"]
    assert len(admitted) == 4
    assert 1 <= admitted.count(True) <= 4

    with file_app.app_context():
        pending = credit_service.get_pending_credit_sales(org_id)
        assert len(pending) == 4
