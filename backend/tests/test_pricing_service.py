# Overview: Pytest coverage for discount approval resolution and price control settings.

import pytest

from admission_engine.errors import ApprovalPermissionError, ValidationError
from admission_engine.models import SaleItem
from admission_engine.services import pendency_service, pricing_service, sales_service
from conftest import APPROVER_ID, SELLER_ID, item


def _discounted_sale(org_id):
    sale, _ = sales_service.create_sale(
        org_id,
        [item(10000, 8500, description="Cadeira"), item(2000, description="Almofada")],
        payment_method="PIX",
        actor_user_id=SELLER_ID,
    )
    return sale


class TestCheckoutPricing:
    def test_excessive_discount_flags_sale(self, org, price_settings):
        sale = _discounted_sale(org.id)

        assert sale.approval_status == "pending_approval"
        assert pendency_service.has_code(sale.id, "D")
        statuses = [i.price_status for i in sale.items]
        assert statuses == ["DISCOUNT_EXCEEDED", "OK"]

    def test_sale_without_settings_is_not_flagged(self, org):
        sale = _discounted_sale(org.id)

        assert sale.approval_status == "normal"
        assert not pendency_service.has_code(sale.id, "D")

    def test_floor_flags_sale_without_changing_item_status(self, org, price_settings, db_session):
        price_settings.min_value_without_approval_cents = 5000
        db_session.commit()

        sale, _ = sales_service.create_sale(org.id, [item(3000)], payment_method="PIX")

        assert sale.items[0].price_status == "OK"
        assert sale.approval_status == "pending_approval"
        assert pendency_service.has_code(sale.id, "D")


class TestApprovalResolution:
    def test_approve_sale_releases_and_clears_d(self, org, price_settings):
        sale = _discounted_sale(org.id)

        released = pricing_service.approve_sale(sale.id, APPROVER_ID)

        assert released.approval_status == "released"
        assert released.approved_by_user_id == APPROVER_ID
        assert all(i.price_status == "OK" for i in released.items)
        assert pendency_service.can_invoice(sale.id)

    def test_non_approver_rejected(self, org, price_settings):
        sale = _discounted_sale(org.id)

        with pytest.raises(ApprovalPermissionError):
            pricing_service.approve_sale(sale.id, SELLER_ID)
        assert pendency_service.has_code(sale.id, "D")

    def test_approving_last_flagged_item_releases_sale(self, org, price_settings):
        sale = _discounted_sale(org.id)
        flagged = [i for i in sale.items if i.price_status != "OK"][0]

        approved = pricing_service.approve_sale_item(flagged.id, APPROVER_ID)

        assert approved.price_status == "OK"
        assert approved.approved_by_user_id == APPROVER_ID
        refreshed = sales_service.get_sale(sale.id)
        assert refreshed.approval_status == "released"
        assert not pendency_service.has_code(sale.id, "D")

    def test_approving_one_of_two_flagged_items_keeps_d(self, org, price_settings):
        sale, _ = sales_service.create_sale(
            org.id, [item(10000, 8000), item(10000, 7000)], payment_method="PIX"
        )
        first = sale.items[0]

        pricing_service.approve_sale_item(first.id, APPROVER_ID)

        assert pendency_service.has_code(sale.id, "D")
        assert sales_service.get_sale(sale.id).approval_status == "pending_approval"

    def test_reject_requires_reason(self, org, price_settings):
        sale = _discounted_sale(org.id)

        with pytest.raises(ValidationError):
            pricing_service.reject_sale(sale.id, APPROVER_ID, "   ")

    def test_reject_keeps_d_and_sets_block_reason(self, org, price_settings):
        sale = _discounted_sale(org.id)

        rejected = pricing_service.reject_sale(sale.id, APPROVER_ID, "Desconto acima do permitido")

        assert rejected.approval_status == "normal"
        assert rejected.block_reason == "Desconto acima do permitido"
        assert pendency_service.has_code(sale.id, "D")
        assert not pendency_service.can_invoice(sale.id)

    def test_apply_price_policy_after_settings_change(self, org, db_session):
        sale = _discounted_sale(org.id)
        assert not pendency_service.has_code(sale.id, "D")

        pricing_service.save_price_control_settings(
            org.id, is_active=True, max_seller_discount_percent=10, approver_user_ids=[APPROVER_ID]
        )
        results = pricing_service.apply_price_policy(sale.id)

        assert [r["status"] for r in results] == ["DISCOUNT_EXCEEDED", "OK"]
        assert pendency_service.has_code(sale.id, "D")


class TestSaleLevelDiscount:
    def test_discount_over_cap_flags_sale(self, org, price_settings):
        sale, _ = sales_service.create_sale(org.id, [item(10000)], payment_method="PIX", discount_cents=9000)

        assert sale.total_cents == 1000
        assert sale.items[0].price_status == "OK"
        assert sale.approval_status == "pending_approval"
        assert pendency_service.has_code(sale.id, "D")
        assert not pendency_service.can_invoice(sale.id)

    def test_discount_within_cap_is_not_flagged(self, org, price_settings):
        sale, _ = sales_service.create_sale(org.id, [item(10000)], payment_method="PIX", discount_cents=1000)

        assert sale.approval_status == "normal"
        assert pendency_service.can_invoice(sale.id)

    def test_approve_sale_signs_off_discount(self, org, price_settings):
        sale, _ = sales_service.create_sale(org.id, [item(10000)], payment_method="PIX", discount_cents=9000)

        released = pricing_service.approve_sale(sale.id, APPROVER_ID)

        assert released.approval_status == "released"
        assert released.approved_discount_cents == 9000
        assert pendency_service.can_invoice(sale.id)

    def test_item_approval_does_not_release_pending_sale_discount(self, org, price_settings):
        sale, _ = sales_service.create_sale(
            org.id, [item(10000, 8000)], payment_method="PIX", discount_cents=5000
        )

        pricing_service.approve_sale_item(sale.items[0].id, APPROVER_ID)

        assert pendency_service.has_code(sale.id, "D")
        assert sales_service.get_sale(sale.id).approval_status == "pending_approval"


class TestPolicyReapplication:
    def test_deactivated_control_clears_d(self, org, price_settings, db_session):
        sale = _discounted_sale(org.id)
        price_settings.is_active = False
        db_session.commit()

        results = pricing_service.apply_price_policy(sale.id)

        assert [r["status"] for r in results] == ["OK", "OK"]
        refreshed = sales_service.get_sale(sale.id)
        assert refreshed.approval_status == "normal"
        assert pendency_service.can_invoice(sale.id)

    def test_approved_prices_survive_reapply(self, org, price_settings):
        sale = _discounted_sale(org.id)
        pricing_service.approve_sale(sale.id, APPROVER_ID)

        results = pricing_service.apply_price_policy(sale.id)

        assert results[0]["approved"] is True
        refreshed = sales_service.get_sale(sale.id)
        assert refreshed.approval_status == "released"
        assert [i.price_status for i in refreshed.items] == ["OK", "OK"]
        assert pendency_service.can_invoice(sale.id)

    def test_repriced_item_needs_approval_again(self, org, price_settings, db_session):
        sale = _discounted_sale(org.id)
        pricing_service.approve_sale(sale.id, APPROVER_ID)

        chair = db_session.get(SaleItem, sale.items[0].id)
        chair.unit_price_cents = 8000
        db_session.commit()

        results = pricing_service.apply_price_policy(sale.id)

        assert results[0]["status"] == "DISCOUNT_EXCEEDED"
        assert results[0]["approved"] is False
        assert sales_service.get_sale(sale.id).approval_status == "pending_approval"
        assert pendency_service.has_code(sale.id, "D")

    def test_rejected_sale_with_corrected_prices_is_cleared(self, org, price_settings, db_session):
        sale = _discounted_sale(org.id)
        pricing_service.reject_sale(sale.id, APPROVER_ID, "Desconto acima do permitido")

        chair = db_session.get(SaleItem, sale.items[0].id)
        chair.unit_price_cents = 9500
        db_session.commit()

        pricing_service.apply_price_policy(sale.id)

        refreshed = sales_service.get_sale(sale.id)
        assert refreshed.block_reason is None
        assert pendency_service.can_invoice(sale.id)



class TestPriceControlSettings:
    def test_save_creates_then_updates(self, org):
        created = pricing_service.save_price_control_settings(org.id, is_active=True, max_seller_discount_percent=5)
        updated = pricing_service.save_price_control_settings(org.id, approver_user_ids=[3, 3, 1])

        assert created.id == updated.id
        assert updated.max_seller_discount_percent == 5
        assert updated.approver_user_ids == [1, 3]

    def test_rejects_unknown_fields(self, org):
        with pytest.raises(ValidationError):
            pricing_service.save_price_control_settings(org.id, max_discount=5)

    def test_rejects_out_of_range_percent(self, org):
        with pytest.raises(ValidationError):
            pricing_service.save_price_control_settings(org.id, max_seller_discount_percent=120)
