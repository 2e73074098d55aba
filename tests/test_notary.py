# tests/test_notary.py
from dataclasses import replace

import pytest

from memberledger.errors import ConflictRejected, VerificationRejected
from memberledger.services.notary import Notary

from conftest import edit_tx, issue_tx, make_member, sign_all


@pytest.mark.asyncio
async def test_notary_finalises_fully_signed_issue(notary, alice, bob):
    stx = sign_all(issue_tx(make_member(alice.party, bob.party)), alice, bob)
    receipt = await notary.submit(stx)
    assert receipt.tx_id == stx.id
    assert Notary.verify_receipt(receipt, notary.party, stx.id)
    assert not Notary.verify_receipt(receipt, notary.party, "0" * 64)


@pytest.mark.asyncio
async def test_resubmission_returns_same_receipt(notary, alice, bob):
    stx = sign_all(issue_tx(make_member(alice.party, bob.party)), alice, bob)
    assert await notary.submit(stx) == await notary.submit(stx)


@pytest.mark.asyncio
async def test_partially_signed_transition_refused(notary, alice, bob):
    stx = sign_all(issue_tx(make_member(alice.party, bob.party)), alice)
    with pytest.raises(VerificationRejected, match="Missing signatures"):
        await notary.submit(stx)


@pytest.mark.asyncio
async def test_contract_violation_refused(notary, alice, bob):
    stx = sign_all(issue_tx(make_member(alice.party, bob.party), signers={alice.key}), alice)
    with pytest.raises(VerificationRejected, match="All participants must sign"):
        await notary.submit(stx)


@pytest.mark.asyncio
async def test_other_notary_refused(notary, alice, bob):
    stx = sign_all(issue_tx(make_member(alice.party, bob.party), notary="O=Elsewhere,L=Oslo,C=NO"), alice, bob)
    with pytest.raises(VerificationRejected, match="names notary"):
        await notary.submit(stx)


@pytest.mark.asyncio
async def test_double_spend_refused(notary, alice, bob):
    issued = sign_all(issue_tx(make_member(alice.party, bob.party)), alice, bob)
    await notary.submit(issued)
    previous = issued.tx.out_ref(0)

    first = sign_all(edit_tx(previous, replace(previous.state, title="Dr")), alice, bob)
    second = sign_all(edit_tx(previous, replace(previous.state, title="Prof")), alice, bob)

    await notary.submit(first)
    with pytest.raises(ConflictRejected) as exc:
        await notary.submit(second)

    assert exc.value.conflicts == {previous.ref: first.id}
    assert notary.consumed_by(previous.ref) == first.id
