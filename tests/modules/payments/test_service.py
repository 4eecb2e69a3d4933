"""
Tests for the payment ledger: order creation, retries and reconciliation.
"""

from datetime import UTC, datetime
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest
from sqlalchemy.exc import IntegrityError

from admissions.core.errors import ServiceError
from admissions.modules.applicants.models import ApplicantStatus, StageStatus
from admissions.modules.payments.gateway import GatewayStatusReport, GatewayUnavailableError
from admissions.modules.payments.models import PaymentOrder, PaymentStatus
from admissions.modules.payments.schemas import CreateOrderRequest
from admissions.modules.payments.service import (
    DuplicateActiveOrderError,
    InvalidGatewayStatusError,
    InvalidTransitionError,
    PaymentAlreadyCompletedError,
    PaymentNotDueError,
    ReconcileResult,
    UnknownOrderError,
    UnknownPaymentTypeError,
    create_order,
    normalize_gateway_status,
    poll_stale_orders,
    reconcile_callback,
    retry,
    sync_order_status,
)
from admissions.modules.stages.service import SettlementResult

SERVICE = "admissions.modules.payments.service"


def make_order(applicant_id=None, *, status=PaymentStatus.CREATED, order_id="HKT1760000000000001"):
    now = datetime.now(UTC)
    return PaymentOrder(
        id=uuid4(),
        order_id=order_id,
        applicant_id=applicant_id or uuid4(),
        amount=Decimal("1000.00"),
        currency="INR",
        payment_type="participation",
        status=status,
        checkout_url="https://gateway.test/pay",
        created_at=now,
        updated_at=now,
    )


@pytest.fixture
def due_applicant(make_applicant):
    """An applicant selected into the fee stage who has not paid yet."""
    return make_applicant(current_stage=2, stage_status=StageStatus.AWAITING_PAYMENT)


@pytest.fixture
def gateway():
    client = MagicMock()
    client.create_checkout = AsyncMock(return_value="https://gateway.test/pay/new")
    client.fetch_status = AsyncMock()
    return client


class TestNormalizeGatewayStatus:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("Success", PaymentStatus.SUCCESS),
            ("Shipped", PaymentStatus.SUCCESS),
            ("Failure", PaymentStatus.FAILED),
            ("Aborted", PaymentStatus.FAILED),
            ("Canceled", PaymentStatus.CANCELLED),
            (" Awaited ", PaymentStatus.PENDING),
        ],
    )
    def test_known_spellings(self, raw, expected):
        assert normalize_gateway_status(raw) == expected

    def test_unknown(self):
        with pytest.raises(InvalidGatewayStatusError):
            normalize_gateway_status("refund_initiated")


def test_order_request_carries_no_amount():
    request = CreateOrderRequest.model_validate({"payment_type": "participation", "amount": "0.01"})

    assert request.model_dump() == {"payment_type": "participation"}


class TestCreateOrder:
    @pytest.mark.asyncio
    async def test_create_success(self, mock_db, due_applicant, gateway):
        created = make_order(due_applicant.id)
        with (
            patch(f"{SERVICE}.repository") as mock_repo,
            patch(f"{SERVICE}.get_applicant", new=AsyncMock(return_value=due_applicant)),
        ):
            mock_repo.get_successful_order = AsyncMock(return_value=None)
            mock_repo.get_active_order = AsyncMock(return_value=None)
            mock_repo.order_id_exists = AsyncMock(return_value=False)
            mock_repo.create = AsyncMock(return_value=created)

            result = await create_order(mock_db, due_applicant.id, "participation", gateway=gateway)

            assert result is created
            kwargs = mock_repo.create.call_args.kwargs
            assert kwargs["amount"] == Decimal("1000.00")
            assert kwargs["checkout_url"] == "https://gateway.test/pay/new"
            assert kwargs["order_id"].startswith("HKT")
            assert kwargs["retry_of"] is None
            mock_db.commit.assert_called_once()

    @pytest.mark.asyncio
    async def test_gateway_down_persists_nothing(self, mock_db, due_applicant, gateway):
        gateway.create_checkout = AsyncMock(side_effect=GatewayUnavailableError())
        with (
            patch(f"{SERVICE}.repository") as mock_repo,
            patch(f"{SERVICE}.get_applicant", new=AsyncMock(return_value=due_applicant)),
        ):
            mock_repo.get_successful_order = AsyncMock(return_value=None)
            mock_repo.get_active_order = AsyncMock(return_value=None)
            mock_repo.order_id_exists = AsyncMock(return_value=False)
            mock_repo.create = AsyncMock()

            with pytest.raises(GatewayUnavailableError):
                await create_order(mock_db, due_applicant.id, "participation", gateway=gateway)

            mock_repo.create.assert_not_called()
            mock_db.commit.assert_not_called()

    @pytest.mark.asyncio
    async def test_duplicate_active_order(self, mock_db, due_applicant, gateway):
        active = make_order(due_applicant.id, status=PaymentStatus.PENDING)
        with (
            patch(f"{SERVICE}.repository") as mock_repo,
            patch(f"{SERVICE}.get_applicant", new=AsyncMock(return_value=due_applicant)),
        ):
            mock_repo.get_successful_order = AsyncMock(return_value=None)
            mock_repo.get_active_order = AsyncMock(return_value=active)

            with pytest.raises(DuplicateActiveOrderError) as exc_info:
                await create_order(mock_db, due_applicant.id, "participation", gateway=gateway)

            assert exc_info.value.order_id == active.order_id
            gateway.create_checkout.assert_not_called()

    @pytest.mark.asyncio
    async def test_concurrent_insert_hits_unique_index(self, mock_db, due_applicant, gateway):
        with (
            patch(f"{SERVICE}.repository") as mock_repo,
            patch(f"{SERVICE}.get_applicant", new=AsyncMock(return_value=due_applicant)),
        ):
            mock_repo.get_successful_order = AsyncMock(return_value=None)
            mock_repo.get_active_order = AsyncMock(return_value=None)
            mock_repo.order_id_exists = AsyncMock(return_value=False)
            mock_repo.create = AsyncMock(side_effect=IntegrityError("INSERT", {}, MagicMock()))

            with pytest.raises(DuplicateActiveOrderError):
                await create_order(mock_db, due_applicant.id, "participation", gateway=gateway)

            mock_db.rollback.assert_called_once()

    @pytest.mark.asyncio
    async def test_already_paid(self, mock_db, due_applicant, gateway):
        with (
            patch(f"{SERVICE}.repository") as mock_repo,
            patch(f"{SERVICE}.get_applicant", new=AsyncMock(return_value=due_applicant)),
        ):
            mock_repo.get_successful_order = AsyncMock(
                return_value=make_order(due_applicant.id, status=PaymentStatus.SUCCESS)
            )

            with pytest.raises(PaymentAlreadyCompletedError):
                await create_order(mock_db, due_applicant.id, "participation", gateway=gateway)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "stage,stage_status,status",
        [
            (0, StageStatus.PENDING_REVIEW, ApplicantStatus.ACTIVE),
            (1, StageStatus.PENDING_REVIEW, ApplicantStatus.ACTIVE),
            (2, StageStatus.PENDING_REVIEW, ApplicantStatus.ACTIVE),
            (2, StageStatus.AWAITING_PAYMENT, ApplicantStatus.WITHDRAWN),
        ],
    )
    async def test_fee_not_due(self, mock_db, make_applicant, gateway, stage, stage_status, status):
        """Paying ahead of selection would leave the applicant stuck later, so it is refused."""
        applicant = make_applicant(current_stage=stage, stage_status=stage_status, status=status)
        with (
            patch(f"{SERVICE}.repository") as mock_repo,
            patch(f"{SERVICE}.get_applicant", new=AsyncMock(return_value=applicant)),
        ):
            mock_repo.get_successful_order = AsyncMock(return_value=None)
            mock_repo.get_active_order = AsyncMock(return_value=None)
            mock_repo.create = AsyncMock()

            with pytest.raises(PaymentNotDueError) as exc_info:
                await create_order(mock_db, applicant.id, "participation", gateway=gateway)

            assert exc_info.value.status_code == 409
            gateway.create_checkout.assert_not_called()
            mock_repo.create.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_payment_type(self, mock_db, gateway):
        with pytest.raises(UnknownPaymentTypeError):
            await create_order(mock_db, uuid4(), "merchandise", gateway=gateway)


class TestRetry:
    @pytest.mark.asyncio
    async def test_retry_cancelled_order(self, mock_db, due_applicant, gateway):
        original = make_order(due_applicant.id, status=PaymentStatus.CANCELLED)
        replacement = make_order(due_applicant.id, order_id="HKT1760000000000002")
        with (
            patch(f"{SERVICE}.repository") as mock_repo,
            patch(f"{SERVICE}.get_applicant", new=AsyncMock(return_value=due_applicant)),
        ):
            mock_repo.get_by_order_id = AsyncMock(return_value=original)
            mock_repo.get_successful_order = AsyncMock(return_value=None)
            mock_repo.get_active_order = AsyncMock(return_value=None)
            mock_repo.order_id_exists = AsyncMock(return_value=False)
            mock_repo.create = AsyncMock(return_value=replacement)

            result = await retry(mock_db, original.order_id, gateway=gateway)

            assert result is replacement
            kwargs = mock_repo.create.call_args.kwargs
            assert kwargs["retry_of"] == original.order_id
            assert kwargs["payment_type"] == original.payment_type
            assert kwargs["amount"] == Decimal("1000.00")
            assert original.status == PaymentStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_retry_after_fee_no_longer_due(self, mock_db, make_applicant, gateway):
        applicant = make_applicant(current_stage=2, status=ApplicantStatus.WITHDRAWN)
        original = make_order(applicant.id, status=PaymentStatus.FAILED)
        with (
            patch(f"{SERVICE}.repository") as mock_repo,
            patch(f"{SERVICE}.get_applicant", new=AsyncMock(return_value=applicant)),
        ):
            mock_repo.get_by_order_id = AsyncMock(return_value=original)
            mock_repo.get_successful_order = AsyncMock(return_value=None)
            mock_repo.get_active_order = AsyncMock(return_value=None)

            with pytest.raises(PaymentNotDueError):
                await retry(mock_db, original.order_id, gateway=gateway)

            gateway.create_checkout.assert_not_called()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status", [PaymentStatus.SUCCESS, PaymentStatus.PENDING, PaymentStatus.CREATED]
    )
    async def test_retry_requires_failed_or_cancelled(self, mock_db, gateway, status):
        original = make_order(status=status)
        with patch(f"{SERVICE}.repository") as mock_repo:
            mock_repo.get_by_order_id = AsyncMock(return_value=original)

            with pytest.raises(InvalidTransitionError):
                await retry(mock_db, original.order_id, gateway=gateway)

            gateway.create_checkout.assert_not_called()

    @pytest.mark.asyncio
    async def test_retry_unknown_order(self, mock_db, gateway):
        with patch(f"{SERVICE}.repository") as mock_repo:
            mock_repo.get_by_order_id = AsyncMock(return_value=None)

            with pytest.raises(UnknownOrderError):
                await retry(mock_db, "HKT0", gateway=gateway)


class TestReconcileCallback:
    @pytest.fixture
    def collaborators(self, sample_applicant):
        with (
            patch(f"{SERVICE}.repository") as mock_repo,
            patch(f"{SERVICE}.stages_service") as mock_stages,
            patch(f"{SERVICE}.get_applicant", new=AsyncMock(return_value=sample_applicant)),
            patch(f"{SERVICE}.send_payment_receipt", new_callable=AsyncMock) as mock_receipt,
            patch(f"{SERVICE}.send_confirmation_code", new_callable=AsyncMock) as mock_code,
        ):
            mock_stages.settle_payment = AsyncMock(return_value=SettlementResult(settled=True))
            yield {
                "repo": mock_repo,
                "stages": mock_stages,
                "receipt": mock_receipt,
                "code": mock_code,
            }

    @pytest.mark.asyncio
    async def test_success_settles_stage_once(self, mock_db, collaborators):
        updated = make_order(status=PaymentStatus.SUCCESS)
        collaborators["repo"].transition_status = AsyncMock(return_value=updated)

        result = await reconcile_callback(mock_db, updated.order_id, "Success", tracking_id="trk_1")

        assert result.changed
        assert result.order is updated
        kwargs = collaborators["repo"].transition_status.call_args.kwargs
        assert kwargs["target"] == PaymentStatus.SUCCESS
        assert kwargs["sources"] == {PaymentStatus.CREATED, PaymentStatus.PENDING}
        collaborators["stages"].settle_payment.assert_called_once_with(
            mock_db, updated.applicant_id, "participation"
        )
        mock_db.commit.assert_called_once()
        collaborators["receipt"].assert_called_once()
        collaborators["code"].assert_not_called()

    @pytest.mark.asyncio
    async def test_success_sends_issued_confirmation_code(self, mock_db, collaborators):
        updated = make_order(status=PaymentStatus.SUCCESS)
        collaborators["repo"].transition_status = AsyncMock(return_value=updated)
        collaborators["stages"].settle_payment = AsyncMock(
            return_value=SettlementResult(settled=True, confirmation_code="abc")
        )

        await reconcile_callback(mock_db, updated.order_id, "success")

        assert collaborators["code"].call_args.kwargs["code"] == "abc"

    @pytest.mark.asyncio
    async def test_duplicate_success_is_noop(self, mock_db, collaborators):
        current = make_order(status=PaymentStatus.SUCCESS)
        collaborators["repo"].transition_status = AsyncMock(return_value=None)
        collaborators["repo"].get_by_order_id = AsyncMock(return_value=current)

        result = await reconcile_callback(mock_db, current.order_id, "Success")

        assert result == ReconcileResult(order=current, changed=False)
        collaborators["stages"].settle_payment.assert_not_called()
        collaborators["receipt"].assert_not_called()
        mock_db.commit.assert_not_called()

    @pytest.mark.asyncio
    async def test_failure_after_success_is_rejected(self, mock_db, collaborators):
        current = make_order(status=PaymentStatus.SUCCESS)
        collaborators["repo"].transition_status = AsyncMock(return_value=None)
        collaborators["repo"].get_by_order_id = AsyncMock(return_value=current)

        with pytest.raises(InvalidTransitionError):
            await reconcile_callback(mock_db, current.order_id, "Failure")

        assert current.status == PaymentStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_unknown_order(self, mock_db, collaborators):
        collaborators["repo"].transition_status = AsyncMock(return_value=None)
        collaborators["repo"].get_by_order_id = AsyncMock(return_value=None)

        with pytest.raises(UnknownOrderError):
            await reconcile_callback(mock_db, "HKT404", "Success")

    @pytest.mark.asyncio
    async def test_failure_keeps_message(self, mock_db, collaborators):
        updated = make_order(status=PaymentStatus.FAILED)
        collaborators["repo"].transition_status = AsyncMock(return_value=updated)

        result = await reconcile_callback(
            mock_db, updated.order_id, "Failure", failure_message="Card declined"
        )

        assert result.changed
        assert collaborators["repo"].transition_status.call_args.kwargs["failure_message"] == "Card declined"
        collaborators["stages"].settle_payment.assert_not_called()

    @pytest.mark.asyncio
    async def test_settlement_error_rolls_back(self, mock_db, collaborators):
        updated = make_order(status=PaymentStatus.SUCCESS)
        collaborators["repo"].transition_status = AsyncMock(return_value=updated)
        collaborators["stages"].settle_payment = AsyncMock(
            side_effect=ServiceError("boom", "UNKNOWN_APPLICANT", status_code=404)
        )

        with pytest.raises(ServiceError):
            await reconcile_callback(mock_db, updated.order_id, "Success")

        mock_db.rollback.assert_called_once()
        mock_db.commit.assert_not_called()

    @pytest.mark.asyncio
    async def test_unrecognized_status_touches_nothing(self, mock_db, collaborators):
        collaborators["repo"].transition_status = AsyncMock()

        with pytest.raises(InvalidGatewayStatusError):
            await reconcile_callback(mock_db, "HKT1", "chargeback")

        collaborators["repo"].transition_status.assert_not_called()


class TestSyncOrderStatus:
    @pytest.mark.asyncio
    async def test_terminal_order_skips_gateway(self, mock_db, gateway):
        order = make_order(status=PaymentStatus.FAILED)
        with patch(f"{SERVICE}.repository") as mock_repo:
            mock_repo.get_by_order_id = AsyncMock(return_value=order)

            result = await sync_order_status(mock_db, order.order_id, gateway=gateway)

            assert not result.changed
            gateway.fetch_status.assert_not_called()

    @pytest.mark.asyncio
    async def test_changed_status_is_reconciled(self, mock_db, gateway):
        order = make_order(status=PaymentStatus.PENDING)
        gateway.fetch_status = AsyncMock(
            return_value=GatewayStatusReport(order_id=order.order_id, gateway_status="Success")
        )
        reconciled = ReconcileResult(order=order, changed=True)
        with (
            patch(f"{SERVICE}.repository") as mock_repo,
            patch(f"{SERVICE}.reconcile_callback", new=AsyncMock(return_value=reconciled)) as mock_rec,
        ):
            mock_repo.get_by_order_id = AsyncMock(return_value=order)

            result = await sync_order_status(mock_db, order.order_id, gateway=gateway)

            assert result is reconciled
            assert mock_rec.call_args.args[2] == "Success"


@pytest.mark.asyncio
async def test_poll_stale_orders_continues_after_errors(mock_db):
    orders = [make_order(order_id=f"HKT{i}") for i in range(3)]
    outcomes = [
        ReconcileResult(order=orders[0], changed=True),
        GatewayUnavailableError(),
        ReconcileResult(order=orders[2], changed=False),
    ]
    with (
        patch(f"{SERVICE}.repository") as mock_repo,
        patch(f"{SERVICE}.sync_order_status", new=AsyncMock(side_effect=outcomes)),
    ):
        mock_repo.list_stale_active_orders = AsyncMock(return_value=orders)

        result = await poll_stale_orders(mock_db)

    assert result == {"checked": 3, "changed": 1, "errors": 1}
    mock_db.rollback.assert_called_once()
