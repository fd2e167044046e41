"""Tests for the authorization dispatcher and ownership resolution."""

import uuid

import pytest
from sqlalchemy.exc import NoResultFound, OperationalError
from starlette.requests import Request

from cover.api.authz import Authorizer, build_registry
from cover.api.errors import AppError, ErrorCategory, ErrorKey
from cover.auth.authable import Authable
from cover.auth.ownership import OwnershipLookupError, resolve_claim_item_chain
from cover.lifecycle.claims import ClaimStatus
from cover.lifecycle.items import ItemCoverageStatus
from cover.models import Item, Policy

from tests.conftest import make_claim, make_claim_item, make_item, make_policy


def make_request(method: str, path: str) -> Request:
    return Request({
        "type": "http",
        "method": method,
        "path": path,
        "headers": [],
        "query_string": b"",
    })


@pytest.fixture
def authorizer() -> Authorizer:
    return Authorizer(build_registry())


# ── Stub resources for an alternate registry ─────────────────────────────────

class _Gadget(Authable):
    rows: dict = {}

    def __init__(self, id=None, owner_id=None):
        self.id = id
        self.owner_id = owner_id

    @classmethod
    async def find_by_id(cls, session, resource_id):
        try:
            return cls.rows[resource_id]
        except KeyError:
            raise NoResultFound(str(resource_id))

    async def is_actor_allowed_to(self, session, actor, permission, sub_resource, request=None):
        return self.owner_id == actor.id


class _BrokenGadget(Authable):
    @classmethod
    async def find_by_id(cls, session, resource_id):
        raise OperationalError("SELECT", {}, Exception("connection reset"))


class _RulelessGadget(Authable):
    rows: dict = {}

    def __init__(self, id=None):
        self.id = id

    @classmethod
    async def find_by_id(cls, session, resource_id):
        return cls.rows[resource_id]


class TestRegistry:
    def test_registry_is_read_only(self, authorizer):
        with pytest.raises(TypeError):
            authorizer.registry["things"] = _Gadget

    def test_registry_covers_every_routed_resource(self):
        assert set(build_registry()) == {
            "claims", "claim-items", "items", "ledger-reports", "policies",
            "policy-dependents", "policy-users", "strikes", "users",
        }


class TestAlternateRegistry:
    async def test_allows_owner_and_publishes_resource(self, db_session, customer):
        gadget = _Gadget(uuid.uuid4(), customer.id)
        _Gadget.rows = {gadget.id: gadget}
        authorizer = Authorizer({"gadgets": _Gadget})
        request = make_request("GET", f"/gadgets/{gadget.id}")

        resource = await authorizer.authorize(request, db_session, customer)

        assert resource is gadget
        assert request.state.resources["gadgets"] is gadget

    async def test_denies_other_actor(self, db_session, customer, outsider):
        gadget = _Gadget(uuid.uuid4(), customer.id)
        _Gadget.rows = {gadget.id: gadget}
        authorizer = Authorizer({"gadgets": _Gadget})

        with pytest.raises(AppError) as exc_info:
            await authorizer.authorize(make_request("GET", f"/gadgets/{gadget.id}"), db_session, outsider)
        assert exc_info.value.key is ErrorKey.NOT_AUTHORIZED

    async def test_lookup_failure_is_internal(self, db_session, customer):
        authorizer = Authorizer({"gadgets": _BrokenGadget})
        with pytest.raises(AppError) as exc_info:
            await authorizer.authorize(make_request("GET", f"/gadgets/{uuid.uuid4()}"), db_session, customer)
        assert exc_info.value.key is ErrorKey.QUERY_FAILURE
        assert exc_info.value.category is ErrorCategory.INTERNAL
        assert isinstance(exc_info.value.__cause__, OperationalError)

    async def test_changing_source_registry_does_not_leak_in(self, db_session, customer):
        registry = {"gadgets": _Gadget}
        authorizer = Authorizer(registry)
        registry["claims"] = _Gadget
        with pytest.raises(AppError) as exc_info:
            await authorizer.authorize(make_request("GET", "/claims"), db_session, customer)
        assert exc_info.value.key is ErrorKey.UNKNOWN_RESOURCE

    async def test_model_without_rules_is_denied(self, db_session, steward):
        gadget = _RulelessGadget(uuid.uuid4())
        _RulelessGadget.rows = {gadget.id: gadget}
        authorizer = Authorizer({"gadgets": _RulelessGadget})

        with pytest.raises(AppError) as exc_info:
            await authorizer.authorize(make_request("GET", f"/gadgets/{gadget.id}"), db_session, steward)
        assert exc_info.value.key is ErrorKey.NOT_AUTHORIZED
        assert exc_info.value.http_status == 404


class TestDispatcher:
    async def test_requires_actor(self, authorizer, db_session):
        with pytest.raises(RuntimeError):
            await authorizer.authorize(make_request("GET", "/policies"), db_session, None)

    async def test_unknown_resource(self, authorizer, db_session, customer):
        with pytest.raises(AppError) as exc_info:
            await authorizer.authorize(make_request("GET", "/widgets"), db_session, customer)
        assert exc_info.value.key is ErrorKey.UNKNOWN_RESOURCE
        assert exc_info.value.http_status == 500

    async def test_malformed_id_rejected_before_lookup(self, authorizer, db_session, customer):
        with pytest.raises(AppError) as exc_info:
            await authorizer.authorize(make_request("GET", "/policies/xyz/items"), db_session, customer)
        assert exc_info.value.key is ErrorKey.INVALID_RESOURCE_ID

    async def test_member_views_own_policy(self, authorizer, db_session, customer, policy):
        request = make_request("GET", f"/policies/{policy.id}")
        assert await authorizer.authorize(request, db_session, customer) is policy
        assert request.state.resources["policies"] is policy

    async def test_missing_and_forbidden_look_the_same(self, authorizer, db_session, customer, outsider, policy):
        with pytest.raises(AppError) as forbidden:
            await authorizer.authorize(make_request("GET", f"/policies/{policy.id}"), db_session, outsider)
        with pytest.raises(AppError) as missing:
            await authorizer.authorize(make_request("GET", f"/policies/{uuid.uuid4()}"), db_session, customer)

        assert forbidden.value.to_dict() == missing.value.to_dict()
        assert forbidden.value.http_status == 404

    async def test_unknown_verb_denied(self, authorizer, db_session, steward, policy):
        with pytest.raises(AppError) as exc_info:
            await authorizer.authorize(make_request("OPTIONS", f"/policies/{policy.id}"), db_session, steward)
        assert exc_info.value.key is ErrorKey.NOT_AUTHORIZED

    async def test_unknown_sub_resource_denied(self, authorizer, db_session, steward, policy):
        with pytest.raises(AppError) as exc_info:
            await authorizer.authorize(make_request("POST", f"/policies/{policy.id}/launch"), db_session, steward)
        assert exc_info.value.key is ErrorKey.NOT_AUTHORIZED

    async def test_strikes_admin_only(self, authorizer, db_session, customer, steward, policy):
        path = f"/policies/{policy.id}/strikes"
        with pytest.raises(AppError):
            await authorizer.authorize(make_request("POST", path), db_session, customer)
        assert await authorizer.authorize(make_request("POST", path), db_session, steward) is policy

    async def test_item_gate_applies_before_membership(
        self, authorizer, db_session, customer, steward, policy, category,
    ):
        item = await make_item(db_session, policy, category, ItemCoverageStatus.PENDING)
        path = f"/items/{item.id}/approve"

        with pytest.raises(AppError):
            await authorizer.authorize(make_request("POST", path), db_session, customer)
        assert await authorizer.authorize(make_request("POST", path), db_session, steward) is item

    async def test_claim_review3_needs_signator(
        self, authorizer, db_session, steward, signator, policy,
    ):
        claim = await make_claim(db_session, policy, ClaimStatus.REVIEW3)
        path = f"/claims/{claim.id}/approve"

        with pytest.raises(AppError):
            await authorizer.authorize(make_request("POST", path), db_session, steward)
        assert await authorizer.authorize(make_request("POST", path), db_session, signator) is claim

    async def test_claim_list_is_open(self, authorizer, db_session, outsider):
        resource = await authorizer.authorize(make_request("GET", "/claims"), db_session, outsider)
        assert resource.id is None


class TestOwnership:
    async def test_claim_item_chain(self, db_session, customer, policy, category):
        item = await make_item(db_session, policy, category, ItemCoverageStatus.APPROVED)
        claim = await make_claim(db_session, policy)
        claim_item = await make_claim_item(db_session, claim, item)

        chain = await resolve_claim_item_chain(db_session, claim_item)

        assert chain.policy.id == policy.id
        assert chain.item is item
        assert chain.claim is claim

    async def test_member_reaches_claim_item_through_chain(
        self, authorizer, db_session, customer, outsider, policy, category,
    ):
        item = await make_item(db_session, policy, category, ItemCoverageStatus.APPROVED)
        claim = await make_claim(db_session, policy)
        claim_item = await make_claim_item(db_session, claim, item)
        path = f"/claim-items/{claim_item.id}"

        assert await authorizer.authorize(make_request("GET", path), db_session, customer) is claim_item
        with pytest.raises(AppError) as exc_info:
            await authorizer.authorize(make_request("GET", path), db_session, outsider)
        assert exc_info.value.key is ErrorKey.NOT_AUTHORIZED

    async def test_policy_mismatch_is_a_lookup_error(self, db_session, customer, policy, category):
        other_policy = await make_policy(db_session, customer, name="Other")
        item = await make_item(db_session, other_policy, category, ItemCoverageStatus.APPROVED)
        claim = await make_claim(db_session, policy)
        claim_item = await make_claim_item(db_session, claim, item)

        with pytest.raises(OwnershipLookupError):
            await resolve_claim_item_chain(db_session, claim_item)

    async def test_broken_chain_is_internal_not_denial(
        self, authorizer, db_session, customer, policy, category,
    ):
        item = await make_item(db_session, policy, category, ItemCoverageStatus.APPROVED)
        claim = await make_claim(db_session, policy)
        claim_item = await make_claim_item(db_session, claim, item)
        claim_item.item_id = uuid.uuid4()
        await db_session.flush()

        with pytest.raises(AppError) as exc_info:
            await authorizer.authorize(make_request("GET", f"/claim-items/{claim_item.id}"), db_session, customer)
        assert exc_info.value.key is ErrorKey.QUERY_FAILURE

    async def test_missing_row_raises_no_result(self, db_session):
        with pytest.raises(NoResultFound):
            await Policy.find_by_id(db_session, uuid.uuid4())

    def test_unsaved_resource_has_nil_id(self):
        assert Item().get_id() == uuid.UUID(int=0)
