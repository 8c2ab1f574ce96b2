import asyncio

import pytest

from ledger.errors import ConfirmationTimeout, GroupNotFoundError, TransferError, ValidationError
from ledger.reconciler import PaymentAttempt
from schemas import AttemptState, OutcomeStatus
from fakes import CREATOR, DESTINATION, PAYER


@pytest.fixture
def group(ledger):
    return ledger.create_group("Dinner", "100", 2, CREATOR)


@pytest.mark.asyncio
async def test_pay_confirms_and_records(reconciler, ledger, executor, group):
    payment_id = group.payments[0].id

    result = await reconciler.pay(payment_id, "50.00", PAYER)

    assert result.status == OutcomeStatus.CONFIRMED
    assert result.success is True
    assert result.explorer_url.endswith(f"/tx/{result.tx_hash}")
    assert executor.transfers == [(group.wallet_address, "50.00", group.token_address)]

    lookup = ledger.get_payment(payment_id)
    assert lookup.payment.paid is True
    assert lookup.payment.paid_by == PAYER
    assert lookup.payment.tx_hash == result.tx_hash
    assert lookup.group.amount_collected == "50.00"


@pytest.mark.asyncio
async def test_attempt_walks_through_states(reconciler, group):
    attempt = reconciler.locate(group.payments[0].id, "50.00")
    assert attempt.state == AttemptState.LOCATED
    assert attempt.group.id == group.id

    preview = await reconciler.preview(attempt)
    assert attempt.state == AttemptState.PREVIEWED
    assert preview.to == group.wallet_address
    assert preview.amount == "50.00"
    assert preview.token_symbol == "USDC"
    assert preview.fee_estimate == 21000
    assert preview.error is None

    await reconciler.submit(attempt, PAYER)
    assert attempt.state == AttemptState.CONFIRMED
    assert attempt.group.amount_collected == "50.00"


@pytest.mark.asyncio
async def test_submit_requires_located_attempt(reconciler, group):
    attempt = PaymentAttempt(payment_id=group.payments[0].id, amount="50")

    with pytest.raises(ValidationError):
        await reconciler.submit(attempt, PAYER)
    with pytest.raises(ValidationError):
        await reconciler.preview(attempt)


@pytest.mark.asyncio
@pytest.mark.parametrize("amount, payer", [("0", PAYER), ("abc", PAYER), ("10", "0xnope")])
async def test_submit_rejects_bad_input(reconciler, executor, group, amount, payer):
    attempt = reconciler.locate(group.payments[0].id, "50.00")

    with pytest.raises(ValidationError):
        await reconciler.submit(attempt, payer, amount)
    assert executor.transfers == []


@pytest.mark.asyncio
async def test_amount_sent_counts_toward_collected(reconciler, ledger, group):
    payment_id = group.payments[0].id

    await reconciler.pay(payment_id, "40", PAYER)

    lookup = ledger.get_payment(payment_id)
    assert lookup.payment.amount == "50.00"
    assert lookup.payment.paid_amount == "40"
    assert lookup.group.amount_collected == "40.00"


@pytest.mark.asyncio
async def test_paying_twice_is_rejected(reconciler, ledger, executor, group):
    payment_id = group.payments[0].id
    first = await reconciler.pay(payment_id, "50.00", PAYER)

    second = await reconciler.pay(payment_id, "50.00", PAYER)

    assert second.status == OutcomeStatus.REJECTED
    assert second.reason == "Payment has already been paid"
    assert len(executor.transfers) == 1
    assert ledger.get_payment(payment_id).payment.tx_hash == first.tx_hash
    assert ledger.get_group(group.id).amount_collected == "50.00"


@pytest.mark.asyncio
async def test_confirmed_attempt_cannot_be_resubmitted(reconciler, executor, group):
    attempt = reconciler.locate(group.payments[0].id, "50.00")
    await reconciler.submit(attempt, PAYER)

    result = await reconciler.submit(attempt, PAYER)

    assert result.status == OutcomeStatus.REJECTED
    assert attempt.state == AttemptState.CONFIRMED
    assert len(executor.transfers) == 1


@pytest.mark.asyncio
async def test_payment_order_does_not_matter(ledger, reconciler):
    first = ledger.create_group("A", "90", 3, CREATOR)
    second = ledger.create_group("B", "90", 3, CREATOR)

    for payment in first.payments:
        await reconciler.pay(payment.id, payment.amount, PAYER)
    for payment in reversed(second.payments):
        await reconciler.pay(payment.id, payment.amount, PAYER)

    assert ledger.get_group(first.id).amount_collected == "60.00"
    assert ledger.get_group(second.id).amount_collected == "60.00"


@pytest.mark.asyncio
async def test_unknown_link_in_empty_context_is_fabricated_and_paid(reconciler, ledger):
    attempt = reconciler.locate("link-1", "20", group_name="Pizza", payer_address=PAYER)
    assert attempt.state == AttemptState.FABRICATED
    assert attempt.group.id.startswith("temp-")

    # Reopening the link finds the same records
    again = reconciler.locate("link-1", "20", group_name="Pizza")
    assert again.state == AttemptState.LOCATED
    assert again.group.id == attempt.group.id

    result = await reconciler.submit(attempt, PAYER)
    assert result.status == OutcomeStatus.CONFIRMED
    assert ledger.get_group(attempt.group.id).amount_collected == "20.00"
    assert len(ledger.load().groups) == 1


@pytest.mark.asyncio
async def test_payment_without_group_is_paid_into_its_own_group(reconciler, ledger, executor, group):
    attempt = reconciler.locate("stranger", "10", group_name="Dinner", payer_address=PAYER)
    assert attempt.state == AttemptState.FABRICATED
    assert attempt.group is None

    preview = await reconciler.preview(attempt)
    assert preview.error == "Payment is not linked to a group"
    assert preview.to is None

    result = await reconciler.submit(attempt, PAYER)

    assert result.status == OutcomeStatus.CONFIRMED
    assert attempt.group.id.startswith("temp-")
    assert attempt.group.name == "Dinner"
    assert attempt.group.amount_collected == "10.00"
    assert executor.transfers == [(attempt.group.wallet_address, "10", attempt.group.token_address)]
    assert ledger.get_payment("stranger").group.id == attempt.group.id
    assert ledger.get_group(group.id).amount_collected == "0"


@pytest.mark.asyncio
async def test_payer_with_own_groups_can_pay_unknown_link(reconciler, ledger, executor):
    ledger.create_group("My own", "10", 2, PAYER)

    result = await reconciler.pay("creator-link", "25.00", PAYER, group_name="Dinner")

    assert result.status == OutcomeStatus.CONFIRMED
    assert len(executor.transfers) == 1
    lookup = ledger.get_payment("creator-link")
    assert lookup.payment.paid is True
    assert lookup.group.name == "Dinner"
    assert lookup.group.amount_collected == "25.00"
    assert len(ledger.get_user_groups(PAYER)) == 2


@pytest.mark.asyncio
async def test_invalid_group_wallet_is_rejected(reconciler, ledger, executor, group):
    state = ledger.load()
    state.groups[group.id].wallet_address = "0xbroken"
    ledger.save(state)

    result = await reconciler.pay(group.payments[0].id, "50.00", PAYER)

    assert result.status == OutcomeStatus.REJECTED
    assert "Invalid wallet address" in result.reason
    assert executor.transfers == []


@pytest.mark.asyncio
async def test_confirmation_timeout_leaves_payment_unpaid(reconciler, ledger, executor, group):
    executor.time_out = True
    payment_id = group.payments[0].id

    result = await reconciler.pay(payment_id, "50.00", PAYER)

    assert result.status == OutcomeStatus.SUBMITTED_UNCONFIRMED
    assert result.success is False
    assert result.tx_hash is not None
    assert result.explorer_url.endswith(result.tx_hash)
    assert result.reason == "Transaction confirmation timeout after 5s"

    payment = ledger.get_payment(payment_id).payment
    assert payment.paid is False
    assert payment.tx_hash is None
    assert payment.pending_tx_hash == result.tx_hash
    assert ledger.get_group(group.id).amount_collected == "0"


@pytest.mark.asyncio
async def test_reverted_transfer_leaves_payment_unpaid(reconciler, ledger, executor, group):
    executor.confirmed = False
    payment_id = group.payments[0].id

    result = await reconciler.pay(payment_id, "50.00", PAYER)

    assert result.status == OutcomeStatus.REVERTED
    assert result.reason == "Transaction failed on-chain"
    assert result.tx_hash is not None
    payment = ledger.get_payment(payment_id).payment
    assert payment.paid is False
    assert payment.pending_tx_hash is None


@pytest.mark.asyncio
async def test_rejected_transfer_can_be_retried(reconciler, ledger, executor, group):
    executor.reject_reason = "Transaction was rejected by the user."
    attempt = reconciler.locate(group.payments[0].id, "50.00")

    result = await reconciler.submit(attempt, PAYER)
    assert result.status == OutcomeStatus.REJECTED
    assert result.reason == "Transaction was rejected by the user."
    assert result.tx_hash is None
    assert attempt.state == AttemptState.FAILED

    executor.reject_reason = None
    retry = await reconciler.submit(attempt, PAYER)
    assert retry.status == OutcomeStatus.CONFIRMED
    assert ledger.get_group(group.id).amount_collected == "50.00"


@pytest.mark.asyncio
async def test_preview_failure_does_not_block_submit(reconciler, executor, group):
    executor.preview_error = "Failed to estimate fee: node unavailable"
    attempt = reconciler.locate(group.payments[0].id, "50.00")

    preview = await reconciler.preview(attempt)
    assert preview.error == "Failed to estimate fee: node unavailable"
    assert preview.fee_estimate is None
    assert attempt.state == AttemptState.PREVIEWED

    result = await reconciler.submit(attempt, PAYER)
    assert result.status == OutcomeStatus.CONFIRMED


@pytest.mark.asyncio
async def test_completion_is_announced_twice(reconciler, events, group):
    received = []
    events.subscribe(received.append)

    await reconciler.pay(group.payments[0].id, "50.00", PAYER)
    assert len(received) == 1
    assert received[0].group_id == group.id
    assert received[0].delayed is False

    await asyncio.sleep(0.05)
    assert len(received) == 2
    assert received[1].payment_id == received[0].payment_id
    assert received[1].delayed is True


@pytest.mark.asyncio
async def test_failed_payments_are_not_announced(reconciler, events, executor, group):
    received = []
    events.subscribe(received.append)
    executor.time_out = True

    await reconciler.pay(group.payments[0].id, "50.00", PAYER)
    await asyncio.sleep(0.05)

    assert received == []


@pytest.mark.asyncio
async def test_claim_transfers_collected_and_zeroes_it(reconciler, ledger, executor, group):
    await reconciler.pay(group.payments[0].id, "50.00", PAYER)
    assert ledger.get_group(group.id).amount_collected == "50.00"

    result = await reconciler.claim(group.id, DESTINATION)

    assert result.success is True
    assert result.amount == "50.00"
    assert result.to_address == DESTINATION
    assert executor.transfers[-1] == (DESTINATION, "50.00", group.token_address)
    assert ledger.get_group(group.id).amount_collected == "0"

    with pytest.raises(ValidationError, match="No funds to claim"):
        await reconciler.claim(group.id, DESTINATION)


@pytest.mark.asyncio
async def test_recompute_after_claim_restores_collected(reconciler, ledger, group):
    await reconciler.pay(group.payments[0].id, "50.00", PAYER)
    await reconciler.claim(group.id, DESTINATION)

    ledger.recompute_collected(group.id)

    # Payments keep their paid flags, so the claimed amount reappears
    assert ledger.get_group(group.id).amount_collected == "50.00"


@pytest.mark.asyncio
async def test_claim_errors(reconciler, group):
    with pytest.raises(GroupNotFoundError):
        await reconciler.claim("missing", DESTINATION)

    with pytest.raises(ValidationError, match="No funds to claim"):
        await reconciler.claim(group.id, DESTINATION)

    await reconciler.pay(group.payments[0].id, "50.00", PAYER)
    with pytest.raises(ValidationError, match="Invalid destination address"):
        await reconciler.claim(group.id, "0x1234")


@pytest.mark.asyncio
async def test_failed_claim_keeps_collected(reconciler, ledger, executor, group):
    await reconciler.pay(group.payments[0].id, "50.00", PAYER)

    executor.confirmed = False
    with pytest.raises(TransferError, match="Claim transaction failed on-chain"):
        await reconciler.claim(group.id, DESTINATION)
    assert ledger.get_group(group.id).amount_collected == "50.00"

    executor.confirmed = True
    executor.time_out = True
    with pytest.raises(ConfirmationTimeout):
        await reconciler.claim(group.id, DESTINATION)
    assert ledger.get_group(group.id).amount_collected == "50.00"


@pytest.mark.asyncio
async def test_transfer_confirmed_after_payment_paid_elsewhere(reconciler, ledger, executor, events, group):
    payment_id = group.payments[0].id
    received = []
    events.subscribe(received.append)
    confirm = executor.wait_for_confirmation

    async def paid_by_another_context(tx_hash, timeout):
        ledger.mark_paid(payment_id, CREATOR, "0xother", "https://explorer/tx/0xother")
        return await confirm(tx_hash, timeout)

    executor.wait_for_confirmation = paid_by_another_context

    result = await reconciler.pay(payment_id, "50.00", PAYER)

    assert result.status == OutcomeStatus.REJECTED
    assert result.success is False
    assert result.tx_hash is not None
    assert result.tx_hash != "0xother"
    assert "0xother" in result.reason
    assert result.explorer_url.endswith(result.tx_hash)

    payment = ledger.get_payment(payment_id).payment
    assert payment.tx_hash == "0xother"
    assert payment.paid_by == CREATOR
    assert ledger.get_group(group.id).amount_collected == "0"
    assert received == []


@pytest.mark.asyncio
async def test_very_large_amount_is_paid_and_collected(reconciler, ledger):
    amount = "1" + "0" * 28

    result = await reconciler.pay("big-link", amount, PAYER)

    assert result.status == OutcomeStatus.CONFIRMED
    assert ledger.get_payment("big-link").group.amount_collected == amount + ".00"


@pytest.mark.asyncio
async def test_absurd_amount_is_a_validation_error(reconciler, ledger, executor):
    with pytest.raises(ValidationError):
        await reconciler.pay("huge-link", "1E+100000", PAYER)
    assert executor.transfers == []
    assert ledger.load().payments == {}
