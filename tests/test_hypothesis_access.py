"""
Hypothesis Property-Based Tests for access decisions and reconciliation.

Tests evaluator invariants over generated content units and principals, and
the replay safety of reconciliation.
"""

from decimal import Decimal
from uuid import uuid4

from conftest import FakePaymentProvider, InMemoryEntitlementStore, make_outcome
from hypothesis import assume, given, settings
from hypothesis import strategies as st

from studio_access.models.api import ContentKind, ContentStatus, ReconcileStatus, Visibility
from studio_access.models.domain import (
    ContentUnit,
    Granted,
    Monetization,
    Principal,
    RequiresPayment,
)
from studio_access.services.access import evaluate, evaluate_upload
from studio_access.services.payment_provider import to_minor_units
from studio_access.services.reconciliation import ReconciliationService

# ============================================================================
# Hypothesis Strategies
# ============================================================================

principal_ids = st.text(
    alphabet=st.characters(whitelist_categories=("Ll", "Lu", "Nd")), min_size=1, max_size=20
)
principal_sets = st.frozensets(principal_ids, max_size=5)
prices = st.decimals(min_value=0, max_value=1_000_000, places=2, allow_nan=False)
positive_prices = st.decimals(min_value=Decimal("0.01"), max_value=1_000_000, places=2)
kinds = st.sampled_from(list(ContentKind))
statuses = st.sampled_from(list(ContentStatus))


@st.composite
def content_units(draw, visibility=None, is_paid=None, price=None):
    """Generate ContentUnit snapshots."""
    paid = draw(st.booleans()) if is_paid is None else is_paid
    return ContentUnit(
        content_id=uuid4(),
        kind=draw(kinds),
        owner_id=draw(principal_ids),
        visibility=visibility if visibility is not None else draw(st.sampled_from(Visibility)),
        monetization=Monetization(
            is_paid=paid, price=price if price is not None else draw(prices)
        ),
        allow_list=draw(principal_sets),
        paid_principals=draw(principal_sets),
        status=draw(statuses),
    )


optional_principals = st.one_of(st.none(), principal_ids.map(Principal))


class TestEvaluatorProperties:
    """Invariants of evaluate()."""

    @given(
        unit=content_units(visibility=Visibility.PUBLIC, is_paid=False),
        who=optional_principals,
    )
    def test_public_unpaid_always_granted(self, unit: ContentUnit, who: Principal | None):
        """Public free content is granted to anyone, signed in or not."""
        assert evaluate(unit, who) == Granted()

    @given(unit=content_units(is_paid=True))
    def test_owner_always_granted_on_paid(self, unit: ContentUnit):
        """Owners are granted regardless of paid principals."""
        assert evaluate(unit, Principal(unit.owner_id)) == Granted()

    @given(unit=content_units(is_paid=True), principal_id=principal_ids)
    def test_stranger_pays_exact_price(self, unit: ContentUnit, principal_id: str):
        """Principals with no entitlement path are asked for exactly the unit price."""
        assume(principal_id != unit.owner_id)
        assume(principal_id not in unit.allow_list)
        assume(principal_id not in unit.paid_principals)

        decision = evaluate(unit, Principal(principal_id))

        assert decision == RequiresPayment(unit.monetization.price)

    @given(unit=content_units(), principal_id=principal_ids)
    def test_allow_list_never_charged(self, unit: ContentUnit, principal_id: str):
        """Allow-listed principals are always granted."""
        unit = ContentUnit(
            content_id=unit.content_id,
            kind=unit.kind,
            owner_id=unit.owner_id,
            visibility=unit.visibility,
            monetization=unit.monetization,
            allow_list=unit.allow_list | {principal_id},
            paid_principals=unit.paid_principals,
        )

        assert evaluate(unit, Principal(principal_id)) == Granted()

    @given(unit=content_units(is_paid=False), principal_id=principal_ids)
    def test_unpaid_never_requires_payment(self, unit: ContentUnit, principal_id: str):
        """Unmonetized content never asks for payment."""
        assert not isinstance(evaluate(unit, Principal(principal_id)), RequiresPayment)
        assert not isinstance(evaluate(unit), RequiresPayment)

    @given(upload=content_units(), who=optional_principals)
    def test_gallery_path_never_narrows_access(self, upload: ContentUnit, who: Principal | None):
        """Adding a gallery can only widen access to an upload."""
        if evaluate(upload, who) == Granted():
            gallery = ContentUnit(
                content_id=uuid4(),
                kind=ContentKind.GALLERY,
                owner_id="someone-else",
                visibility=Visibility.PRIVATE,
                monetization=Monetization(is_paid=True, price=Decimal("1")),
                item_ids=(upload.content_id,),
            )
            assert evaluate_upload(upload, who, gallery) == Granted()


class TestReconciliationProperties:
    """Replay safety of reconcile()."""

    @settings(max_examples=25)
    @given(price=positive_prices, replays=st.integers(min_value=1, max_value=5))
    async def test_replays_never_change_entitlements(self, price: Decimal, replays: int):
        """Reconciling the same success any number of times grants exactly once."""
        store = InMemoryEntitlementStore()
        provider = FakePaymentProvider()
        unit = ContentUnit(
            content_id=uuid4(),
            kind=ContentKind.GALLERY,
            owner_id="owner",
            visibility=Visibility.PRIVATE,
            monetization=Monetization(is_paid=True, price=price),
        )
        store.add(unit)
        await store.create_payment_intent(
            "REF", "buyer", unit.kind, unit.content_id, price, "NGN", provider.name
        )
        service = ReconciliationService(store, provider, currency="NGN")
        outcome = make_outcome("REF", amount_minor=to_minor_units(price))

        first = await service.reconcile("REF", outcome)
        after_first = store.unit(unit.kind, unit.content_id)
        later = [await service.reconcile("REF", outcome) for _ in range(replays)]

        assert first.status is ReconcileStatus.GRANTED
        assert all(r.status is ReconcileStatus.ALREADY_PROCESSED for r in later)
        assert store.unit(unit.kind, unit.content_id) == after_first
        assert after_first.paid_principals == frozenset({"buyer"})
