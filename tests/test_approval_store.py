"""
Tests for approval request lifecycle and stores.
"""
import asyncio

import pytest

from support_orchestrator.approvals import (
    ApprovalRequest,
    ApprovalStatus,
    InMemoryApprovalStore,
    RedisApprovalStore
)
from support_orchestrator.exceptions import ApprovalNotFoundError, ApprovalStateError


def pending(session_id: str = "s1", tenant_id: str = "acme") -> ApprovalRequest:
    return ApprovalRequest(
        tenant_id=tenant_id,
        session_id=session_id,
        action={"type": "refund", "amount": 25}
    )


@pytest.fixture
async def redis_approval_store(redis_client, redis_prefix):
    yield RedisApprovalStore(redis_client, key_prefix=redis_prefix)

    keys = [key async for key in redis_client.scan_iter(match=f"{redis_prefix}*")]
    if keys:
        await redis_client.delete(*keys)


@pytest.fixture(params=["in_memory", "redis"])
def store(request):
    if request.param == "redis":
        return request.getfixturevalue("redis_approval_store")
    return InMemoryApprovalStore()


# ===========================
# Model
# ===========================

@pytest.mark.unit
def test_transition_from_pending():
    request = pending()

    approved = request.transitioned(ApprovalStatus.APPROVED, approver_id="mgr", notes="fine")

    assert approved.status == ApprovalStatus.APPROVED
    assert approved.resolved_at is not None
    assert request.status == ApprovalStatus.PENDING


@pytest.mark.unit
def test_terminal_status_is_final():
    rejected = pending().transitioned(ApprovalStatus.REJECTED)

    for status in (ApprovalStatus.APPROVED, ApprovalStatus.ESCALATED):
        with pytest.raises(ApprovalStateError):
            rejected.transitioned(status)


@pytest.mark.unit
def test_cannot_transition_back_to_pending():
    with pytest.raises(ApprovalStateError):
        pending().transitioned(ApprovalStatus.PENDING)


@pytest.mark.unit
def test_json_round_trip_keeps_action():
    request = pending()

    restored = ApprovalRequest.from_json(request.to_json())

    assert restored == request


# ===========================
# Store contract
# ===========================

@pytest.mark.unit
async def test_one_pending_request_per_session(store):
    first = await store.create_pending(pending())
    second = await store.create_pending(pending())

    assert second.id == first.id
    assert len(await store.list_for_tenant("acme")) == 1


@pytest.mark.unit
async def test_concurrent_creation_agrees_on_one_request(store):
    created = await asyncio.gather(*(store.create_pending(pending()) for _ in range(5)))

    assert len({request.id for request in created}) == 1


@pytest.mark.unit
async def test_transition_and_get(store):
    created = await store.create_pending(pending())

    updated = await store.transition(created.id, ApprovalStatus.APPROVED, approver_id="mgr")
    fetched = await store.get(created.id)

    assert updated.status == fetched.status == ApprovalStatus.APPROVED
    assert fetched.approver_id == "mgr"


@pytest.mark.unit
async def test_second_transition_is_rejected(store):
    created = await store.create_pending(pending())
    await store.transition(created.id, ApprovalStatus.REJECTED)

    with pytest.raises(ApprovalStateError):
        await store.transition(created.id, ApprovalStatus.APPROVED)


@pytest.mark.unit
async def test_unknown_ids(store):
    with pytest.raises(ApprovalNotFoundError):
        await store.get("nope")
    with pytest.raises(ApprovalNotFoundError):
        await store.transition("nope", ApprovalStatus.APPROVED)


@pytest.mark.unit
async def test_list_for_tenant_filters(store):
    first = await store.create_pending(pending("s1"))
    await store.create_pending(pending("s2"))
    await store.create_pending(pending("s3", tenant_id="other"))
    await store.transition(first.id, ApprovalStatus.APPROVED)

    all_acme = await store.list_for_tenant("acme")
    still_pending = await store.list_for_tenant("acme", status=ApprovalStatus.PENDING)

    assert len(all_acme) == 2
    assert [r.session_id for r in still_pending] == ["s2"]
    assert [r.tenant_id for r in await store.list_for_tenant("other")] == ["other"]


@pytest.mark.unit
async def test_session_can_open_new_request_after_resolution(store):
    first = await store.create_pending(pending())
    await store.transition(first.id, ApprovalStatus.APPROVED)

    second = await store.create_pending(pending())

    assert second.id != first.id
    assert second.status == ApprovalStatus.PENDING
