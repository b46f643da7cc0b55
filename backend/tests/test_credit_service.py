# Overview: Pytest coverage for credit admission and credit review decisions.

import pytest

from admission_engine.errors import CreditStateError, NotFoundError, ValidationError
from admission_engine.models import CreditLog, Customer, PaymentMethod
from admission_engine.services import credit_service, pendency_service, sales_service
from conftest import APPROVER_ID, SELLER_ID, item


def _open_debt(org_id, customer_id, total_cents):
    """Existing receivable for the customer (cash sale still unpaid)."""
    sale, _ = sales_service.create_sale(
        org_id, [item(total_cents)], payment_method="Dinheiro", customer_id=customer_id
    )
    return sale


def _credit_sale(org_id, customer_id, total_cents, payment_method="boleto"):
    return sales_service.create_sale(
        org_id,
        [item(total_cents)],
        payment_method=payment_method,
        customer_id=customer_id,
        actor_user_id=SELLER_ID,
    )


class TestPaymentMethodClassification:
    @pytest.mark.parametrize("label", [
        "boleto",
        "Boleto 30/60/90",
        "BOLETO_BANCARIO",
        "Cartão a prazo",
        "crédito interno",
        "credito_interno",
        "Duplicata",
        "cheque pré-datado",
        "Parcelado loja",
        "Crédito-Loja",
    ])
    def test_credit_bearing_labels(self, label):
        assert credit_service.requires_credit_analysis(label) is True

    @pytest.mark.parametrize("label", ["PIX", "Dinheiro", "Cartão de débito", "", None])
    def test_non_credit_labels(self, label):
        assert credit_service.requires_credit_analysis(label) is False

    def test_configured_method_flag_wins_over_label(self, db_session, org):
        method = PaymentMethod(org_id=org.id, code="pix_boleto", label="boleto", requires_credit_review=False)
        db_session.add(method)
        db_session.commit()

        assert credit_service.requires_credit_analysis(method) is False


class TestAdmission:
    def test_within_limit_allowed(self, org, customer):
        _open_debt(org.id, customer.id, 80000)

        sale, admission = _credit_sale(org.id, customer.id, 15000)

        assert admission.allowed is True
        assert admission.current_debt == 80000
        assert admission.available_credit == 5000
        assert pendency_service.has_code(sale.id, "C")
        assert sale.credit_status == "pending"

    def test_over_limit_denied_with_formatted_reason(self, org, customer):
        _open_debt(org.id, customer.id, 80000)

        sale, admission = _credit_sale(org.id, customer.id, 30000)

        assert admission.allowed is False
        assert admission.current_debt == 80000
        assert admission.available_credit == 20000
        assert "R$ 1.000,00" in admission.reason
        assert "R$ 800,00" in admission.reason
        assert "R$ 200,00" in admission.reason
        # The sale stays under review; the analyst decides
        assert pendency_service.has_code(sale.id, "C")

    def test_exact_limit_allowed(self, org, customer):
        decision = credit_service.can_customer_make_credit_sale(customer.id, 100000, 100000)
        assert decision.allowed is True
        assert decision.available_credit == 0

    @pytest.mark.parametrize("limit", [0, -100, None])
    def test_no_limit_configured_means_unlimited(self, org, customer, limit):
        _open_debt(org.id, customer.id, 80000)

        decision = credit_service.can_customer_make_credit_sale(customer.id, limit, 10**9)

        assert decision.allowed is True
        assert decision.current_debt == 0
        assert decision.available_credit == 0

    def test_no_customer_denied(self, org):
        decision = credit_service.can_customer_make_credit_sale(None, 100000, 100)
        assert decision.allowed is False
        assert decision.reason == "Customer not specified"

    def test_paid_and_cancelled_sales_are_not_debt(self, org, customer):
        paid = _open_debt(org.id, customer.id, 30000)
        cancelled = _open_debt(org.id, customer.id, 20000)
        overdue = _open_debt(org.id, customer.id, 10000)
        sales_service.set_payment_status(paid.id, "paid")
        sales_service.cancel_sale(cancelled.id, SELLER_ID, "Cliente desistiu")
        sales_service.set_payment_status(overdue.id, "overdue")

        assert credit_service.calculate_customer_debt(customer.id) == 10000

    def test_exclude_sale_from_debt(self, org, customer):
        first = _open_debt(org.id, customer.id, 30000)
        _open_debt(org.id, customer.id, 20000)

        assert credit_service.calculate_customer_debt(customer.id) == 50000
        assert credit_service.calculate_customer_debt(customer.id, exclude_sale_id=first.id) == 20000

    def test_currency_follows_organization(self, other_org, db_session):
        customer = Customer(org_id=other_org.id, name="John", credit_limit_cents=5000)
        db_session.add(customer)
        db_session.commit()

        _, admission = _credit_sale(other_org.id, customer.id, 6000)

        assert admission.allowed is False
        assert "$50.00" in admission.reason


class TestCreditInfo:
    def test_credit_info_breakdown(self, org, customer):
        _open_debt(org.id, customer.id, 30000)
        overdue = _open_debt(org.id, customer.id, 20000)
        sales_service.set_payment_status(overdue.id, "overdue")

        info = credit_service.get_customer_credit_info(customer.id, org.id)

        assert info.limit_total == 100000
        assert info.total_open == 30000
        assert info.total_overdue == 20000
        assert info.limit_used == 50000
        assert info.limit_available == 50000

    def test_available_clamped_at_zero(self, org, customer):
        _open_debt(org.id, customer.id, 150000)

        info = credit_service.get_customer_credit_info(customer.id, org.id)
        assert info.limit_available == 0

    def test_customer_of_other_org_not_found(self, org, other_org, customer):
        with pytest.raises(NotFoundError):
            credit_service.get_customer_credit_info(customer.id, other_org.id)


class TestPendingCreditSales:
    def test_lists_pending_and_unreviewed_credit_sales(self, org, customer, db_session):
        pending, _ = _credit_sale(org.id, customer.id, 10000)
        _open_debt(org.id, customer.id, 5000)

        # Legacy row: credit-bearing label but never submitted for review
        legacy = _open_debt(org.id, customer.id, 7000)
        legacy.payment_method = "Duplicata"
        db_session.commit()

        rows = credit_service.get_pending_credit_sales(org.id)
        ids = {row["id"] for row in rows}

        assert ids == {pending.id, legacy.id}
        assert all(row["credit_status"] == "pending" for row in rows)
        assert rows[0]["credit_info"]["limit_total"] == 100000

    def test_decided_sales_leave_the_queue(self, org, customer):
        sale, _ = _credit_sale(org.id, customer.id, 10000)
        credit_service.approve_credit(sale.id, APPROVER_ID)

        assert credit_service.get_pending_credit_sales(org.id) == []

    def test_other_org_sees_nothing(self, org, other_org, customer):
        _credit_sale(org.id, customer.id, 10000)
        assert credit_service.get_pending_credit_sales(other_org.id) == []


class TestCreditDecisions:
    def test_approve_clears_c_and_logs(self, org, customer):
        sale, _ = _credit_sale(org.id, customer.id, 10000)

        approved, log = credit_service.approve_credit(
            sale.id, APPROVER_ID, reason="Bom pagador", details={"notes": "cliente antigo"}
        )

        assert approved.credit_status == "approved"
        assert not pendency_service.has_code(sale.id, "C")
        assert log.action == "credit_approved"
        assert log.previous_status == "pending"
        assert log.new_status == "approved"
        assert log.actor_user_id == APPROVER_ID
        assert log.details["schema_version"] == 1
        assert log.details["notes"] == "cliente antigo"
        assert log.details["credit_limit_cents"] == 100000
        assert log.details["sale_total_cents"] == 10000

    def test_second_decision_rejected(self, org, customer, db_session):
        sale, _ = _credit_sale(org.id, customer.id, 10000)
        credit_service.approve_credit(sale.id, APPROVER_ID)

        with pytest.raises(CreditStateError):
            credit_service.deny_credit(sale.id, APPROVER_ID, "late")
        with pytest.raises(CreditStateError):
            credit_service.approve_credit(sale.id, APPROVER_ID)

        assert db_session.query(CreditLog).filter_by(sale_id=sale.id).count() == 1

    def test_deny_requires_reason(self, org, customer):
        sale, _ = _credit_sale(org.id, customer.id, 10000)

        with pytest.raises(ValidationError):
            credit_service.deny_credit(sale.id, APPROVER_ID, "")
        assert sales_service.get_sale(sale.id).credit_status == "pending"

    def test_deny_keeps_sale_blocked(self, org, customer):
        sale, _ = _credit_sale(org.id, customer.id, 10000)

        denied, log = credit_service.deny_credit(sale.id, APPROVER_ID, "Limite comprometido")

        assert denied.credit_status == "denied"
        assert pendency_service.has_code(sale.id, "C")
        assert not pendency_service.can_invoice(sale.id)
        assert log.reason == "Limite comprometido"

    def test_unknown_detail_fields_rejected_before_write(self, org, customer, db_session):
        sale, _ = _credit_sale(org.id, customer.id, 10000)

        with pytest.raises(ValidationError):
            credit_service.approve_credit(sale.id, APPROVER_ID, details={"whatever": 1})

        assert sales_service.get_sale(sale.id).credit_status == "pending"
        assert db_session.query(CreditLog).count() == 0

    @pytest.mark.parametrize("decide", [
        lambda sale_id, details: credit_service.approve_credit(sale_id, APPROVER_ID, details=details),
        lambda sale_id, details: credit_service.deny_credit(sale_id, APPROVER_ID, "Sem limite", details=details),
        lambda sale_id, details: credit_service.request_credit_adjustment(
            sale_id, APPROVER_ID, "Entrada maior", "down_payment", details=details
        ),
    ])
    def test_computed_credit_fields_cannot_be_supplied(self, org, customer, db_session, decide):
        sale, _ = _credit_sale(org.id, customer.id, 10000)

        with pytest.raises(ValidationError):
            decide(sale.id, {"credit_limit_cents": 999999999})

        assert sales_service.get_sale(sale.id).credit_status == "pending"
        assert db_session.query(CreditLog).count() == 0

    def test_cash_sale_cannot_be_decided(self, org, customer):
        sale = _open_debt(org.id, customer.id, 1000)

        with pytest.raises(CreditStateError):
            credit_service.approve_credit(sale.id, APPROVER_ID)

    def test_unknown_sale(self, db_session):
        with pytest.raises(NotFoundError):
            credit_service.approve_credit(99999, APPROVER_ID)

    def test_decision_scoped_to_org(self, org, other_org, customer):
        sale, _ = _credit_sale(org.id, customer.id, 10000)

        with pytest.raises(NotFoundError):
            credit_service.approve_credit(sale.id, APPROVER_ID, org_id=other_org.id)


class TestCreditAdjustment:
    def test_adjustment_on_pending_sale_only_logs(self, org, customer):
        sale, _ = _credit_sale(org.id, customer.id, 10000)

        adjusted, log = credit_service.request_credit_adjustment(
            sale.id,
            APPROVER_ID,
            "Precisa de entrada",
            "down_payment",
            adjustment_details={"down_payment_cents": 3000},
        )

        assert adjusted.credit_status == "pending"
        assert adjusted.credit_review_cycle == 1
        assert pendency_service.get_codes(sale.id) == {"C"}
        assert log.action == "credit_adjustment_requested"
        assert log.details["adjustment_type"] == "down_payment"
        assert log.details["adjustment_details"] == {"down_payment_cents": 3000}

    def test_adjustment_reopens_decided_sale(self, org, customer):
        sale, _ = _credit_sale(org.id, customer.id, 10000)
        _, denial = credit_service.deny_credit(sale.id, APPROVER_ID, "Sem garantia")

        reopened, log = credit_service.request_credit_adjustment(
            sale.id, APPROVER_ID, "Trocar forma de pagamento", "payment_method"
        )

        assert reopened.credit_status == "pending"
        assert reopened.credit_review_cycle == 2
        assert log.previous_status == "denied"
        assert log.previous_log_id == denial.id
        # Pendencies untouched
        assert pendency_service.get_codes(sale.id) == {"C"}

        approved, approval = credit_service.approve_credit(sale.id, APPROVER_ID)
        assert approved.credit_status == "approved"
        assert approval.review_cycle == 2

    def test_adjustment_validation(self, org, customer):
        sale, _ = _credit_sale(org.id, customer.id, 10000)

        with pytest.raises(ValidationError):
            credit_service.request_credit_adjustment(sale.id, APPROVER_ID, "", "other")
        with pytest.raises(ValidationError):
            credit_service.request_credit_adjustment(sale.id, APPROVER_ID, "x", "discount")
        with pytest.raises(ValidationError):
            credit_service.request_credit_adjustment(
                sale.id, APPROVER_ID, "x", "installments", adjustment_details={"rate": 2}
            )

    def test_logs_newest_first(self, org, customer):
        sale, _ = _credit_sale(org.id, customer.id, 10000)
        credit_service.request_credit_adjustment(sale.id, APPROVER_ID, "Entrada", "down_payment")
        credit_service.approve_credit(sale.id, APPROVER_ID)

        logs = credit_service.get_credit_logs(sale.id)
        assert [log.action for log in logs] == ["credit_approved", "credit_adjustment_requested"]


class TestPaymentMethodChange:
    def test_denied_sale_unblocked_by_switching_to_cash(self, org, customer):
        sale, _ = _credit_sale(org.id, customer.id, 10000)
        credit_service.deny_credit(sale.id, APPROVER_ID, "Limite")

        changed, admission = sales_service.change_payment_method(sale.id, payment_method="PIX")

        assert admission is None
        assert changed.credit_status is None
        assert pendency_service.can_invoice(sale.id)

    def test_switching_to_credit_opens_review(self, org, customer):
        sale = _open_debt(org.id, customer.id, 10000)

        changed, admission = sales_service.change_payment_method(sale.id, payment_method="Crediário a prazo")

        assert admission.allowed is True
        assert changed.credit_status == "pending"
        assert pendency_service.has_code(sale.id, "C")

    def test_configured_method_used_at_checkout(self, org, customer, boleto):
        sale, admission = sales_service.create_sale(
            org.id, [item(1000)], payment_method_id=boleto.id, customer_id=customer.id
        )

        assert sale.payment_method == "Boleto Bancário"
        assert admission is not None
        assert pendency_service.has_code(sale.id, "C")
