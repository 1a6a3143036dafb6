"""Tests for the union lifecycle."""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from kinship.errors import (
    AlreadyFinalized,
    DuplicateUnion,
    InvalidAction,
    InvalidGenderCombination,
    NotFound,
    ValidationError,
)
from kinship.graph.models import UnionStatus, VerificationStatus
from kinship.graph.unions import UnionLifecycleManager


@pytest.fixture
def couple(add_member):
    return add_member("Ramesh", "Male"), add_member("Padma", "Female")


def _rendezvous_on_read(monkeypatch, store, parties=2):
    """Hold each thread after its first union read until all threads have read."""
    barrier = threading.Barrier(parties, timeout=5)
    waited = set()
    original = store.get_union

    def get_union(union_id):
        union = original(union_id)
        me = threading.get_ident()
        if threading.current_thread() is not threading.main_thread() and me not in waited:
            waited.add(me)
            barrier.wait()
        return union

    monkeypatch.setattr(store, "get_union", get_union)


class TestCreateUnion:
    """Tests for union creation."""

    def test_first_union_in_empty_registry(self, graph, store, couple):
        """Should create UNION_0001, Pending, and point both spouses at it."""
        a, b = couple
        union = graph.create_union(a, b, created_by="admin")

        assert union.union_id == "UNION_0001"
        assert union.verification.status == VerificationStatus.PENDING
        assert union.meta_data.created_by == "admin"
        assert store.get_member(a).lineage_links.current_union_id == "UNION_0001"
        assert store.get_member(b).lineage_links.current_union_id == "UNION_0001"

    def test_sequence_increments(self, graph, add_member, couple):
        graph.create_union(*couple)
        second = graph.create_union(add_member("H", "Male"), add_member("W", "Female"))
        assert second.union_id == "UNION_0002"

    def test_duplicate_pair_rejected(self, graph, store, couple):
        """Should raise DuplicateUnion and leave one union for the pair."""
        a, b = couple
        graph.create_union(a, b)

        with pytest.raises(DuplicateUnion):
            graph.create_union(a, b)
        assert store.count_unions() == 1

    def test_missing_member(self, graph, store, couple):
        """Should raise NotFound before writing anything."""
        a, _ = couple
        with pytest.raises(NotFound, match="Husband or Wife not found"):
            graph.create_union(a, "ghost")
        assert store.count_unions() == 0

    def test_wrong_genders(self, graph, store, couple):
        """Should reject a union whose husband is not Male."""
        a, b = couple
        with pytest.raises(InvalidGenderCombination):
            graph.create_union(b, a)
        assert store.count_unions() == 0

    def test_missing_child(self, graph, couple):
        with pytest.raises(NotFound):
            graph.create_union(*couple, children_ids=["ghost"])

    def test_child_of_another_union_rejected(self, graph, store, add_member, couple):
        """Should not list a child that already belongs to a live union."""
        child = add_member("Ravi", "Male")
        graph.create_union(*couple, children_ids=[child])

        with pytest.raises(ValidationError, match="already a child"):
            graph.create_union(add_member("Mohan", "Male"), add_member("Lata", "Female"), children_ids=[child])
        assert store.count_unions() == 1

    def test_children_get_parental_pointer(self, graph, store, add_member, couple):
        child = add_member("Ravi", "Male")
        union = graph.create_union(*couple, children_ids=[child])
        assert store.get_member(child).lineage_links.parental_union_id == union.union_id

    def test_custom_id_format(self, store, couple):
        """Should honour a configured prefix and width."""
        manager = UnionLifecycleManager(store, id_prefix="U-", id_width=6)
        union = manager.create_union(*couple)
        assert union.union_id == "U-000001"

    def test_concurrent_creates_get_distinct_ids(self, graph, add_member):
        """Should never hand the same id to two concurrent creates."""
        pairs = [(add_member(f"H{i}", "Male"), add_member(f"W{i}", "Female")) for i in range(6)]

        with ThreadPoolExecutor(max_workers=6) as pool:
            unions = list(pool.map(lambda p: graph.create_union(*p), pairs))

        ids = [u.union_id for u in unions]
        assert len(set(ids)) == 6
        assert sorted(ids) == [f"UNION_{i:04d}" for i in range(1, 7)]


class TestAddChild:
    """Tests for attaching children."""

    def test_add_child(self, graph, store, add_member, couple):
        union = graph.create_union(*couple)
        child = add_member("Ravi", "Male")

        updated = graph.add_child(union.union_id, child)
        assert updated.children_ids == [child]
        assert store.get_member(child).lineage_links.parental_union_id == union.union_id

    def test_add_child_twice_is_idempotent(self, graph, add_member, couple):
        """Should keep a single entry when the same child is added again."""
        union = graph.create_union(*couple)
        child = add_member("Ravi", "Male")

        graph.add_child(union.union_id, child)
        again = graph.add_child(union.union_id, child)
        assert again.children_ids == [child]

    def test_unknown_union(self, graph, add_member):
        with pytest.raises(NotFound):
            graph.add_child("UNION_9999", add_member("Ravi"))

    def test_unknown_child(self, graph, couple):
        union = graph.create_union(*couple)
        with pytest.raises(NotFound):
            graph.add_child(union.union_id, "ghost")

    def test_child_of_another_union_rejected(self, graph, store, add_member, couple):
        """Should refuse a second live parental union and keep the first pointer."""
        child = add_member("Ravi", "Male")
        first = graph.create_union(*couple, children_ids=[child])
        second = graph.create_union(add_member("Mohan", "Male"), add_member("Lata", "Female"))

        with pytest.raises(ValidationError, match="already a child"):
            graph.add_child(second.union_id, child)

        assert graph.get_union(second.union_id).children_ids == []
        assert store.get_member(child).lineage_links.parental_union_id == first.union_id
        assert graph.repair_back_pointers().members_updated == 0

    def test_child_can_move_after_soft_delete(self, graph, store, add_member, couple):
        """Should accept the child once its previous union is Deceased."""
        child = add_member("Ravi", "Male")
        first = graph.create_union(*couple, children_ids=[child])
        second = graph.create_union(add_member("Mohan", "Male"), add_member("Lata", "Female"))
        graph.soft_delete(first.union_id)

        graph.add_child(second.union_id, child)
        assert store.get_member(child).lineage_links.parental_union_id == second.union_id

    def test_concurrent_adds_keep_every_child(self, graph, store, add_member, couple, monkeypatch):
        """Should keep both children when two adds read the union at the same time."""
        union = graph.create_union(*couple)
        kids = [add_member("Ravi", "Male"), add_member("Meena", "Female")]
        _rendezvous_on_read(monkeypatch, store)

        with ThreadPoolExecutor(max_workers=2) as pool:
            list(pool.map(lambda c: graph.add_child(union.union_id, c), kids))

        assert sorted(store.get_union(union.union_id).children_ids) == sorted(kids)


class TestVerify:
    """Tests for the verification workflow."""

    def test_approve(self, graph, couple):
        union = graph.create_union(*couple)
        approved = graph.verify(union.union_id, "approve", "admin-1")

        assert approved.verification.status == VerificationStatus.APPROVED
        assert approved.verification.is_verified is True
        assert approved.verification.verified_by == "admin-1"
        assert approved.verification.verified_at is not None

    def test_reject_records_reason(self, graph, couple):
        union = graph.create_union(*couple)
        rejected = graph.verify(union.union_id, "reject", "admin-1", "Duplicate entry")

        assert rejected.verification.status == VerificationStatus.REJECTED
        assert rejected.verification.is_verified is False
        assert rejected.verification.rejection_reason == "Duplicate entry"

    def test_invalid_action_leaves_union_unchanged(self, graph, couple):
        """Should raise InvalidAction and keep the union Pending."""
        union = graph.create_union(*couple)
        with pytest.raises(InvalidAction):
            graph.verify(union.union_id, "bogus", "admin-1")

        stored = graph.get_union(union.union_id)
        assert stored.verification.status == VerificationStatus.PENDING
        assert stored.verification.verified_by is None

    def test_second_verification_rejected(self, graph, couple):
        """Should refuse to re-verify a finalized union."""
        union = graph.create_union(*couple)
        graph.verify(union.union_id, "approve", "admin-1")

        with pytest.raises(AlreadyFinalized):
            graph.verify(union.union_id, "reject", "admin-2")
        assert graph.get_union(union.union_id).verification.verified_by == "admin-1"

    def test_unknown_union(self, graph):
        with pytest.raises(NotFound):
            graph.verify("UNION_9999", "approve", "admin-1")

    def test_concurrent_approve_and_reject(self, graph, store, couple, monkeypatch):
        """Should let exactly one of two racing verifications win."""
        union = graph.create_union(*couple)
        _rendezvous_on_read(monkeypatch, store)

        def attempt(args):
            action, actor = args
            try:
                return graph.verify(union.union_id, action, actor, "Duplicate entry")
            except AlreadyFinalized as e:
                return e

        with ThreadPoolExecutor(max_workers=2) as pool:
            results = list(pool.map(attempt, [("approve", "admin-1"), ("reject", "admin-2")]))

        winners = [r for r in results if not isinstance(r, AlreadyFinalized)]
        assert len(winners) == 1
        stored = store.get_union(union.union_id).verification
        assert stored.status == winners[0].verification.status
        assert stored.verified_by == winners[0].verification.verified_by


class TestListing:
    """Tests for pending and by-member listings."""

    def test_list_pending_newest_first(self, graph, add_member, couple):
        first = graph.create_union(*couple)
        second = graph.create_union(add_member("H", "Male"), add_member("W", "Female"))
        graph.verify(first.union_id, "approve", "admin")
        third = graph.create_union(add_member("H2", "Male"), add_member("W2", "Female"))

        pending = [u.union_id for u in graph.list_pending()]
        assert pending == [third.union_id, second.union_id]

    def test_list_by_member_includes_child_role(self, graph, add_member, couple):
        child = add_member("Ravi", "Male")
        union = graph.create_union(*couple, children_ids=[child])
        graph.create_union(child, add_member("Priya", "Female"))

        ids = [u.union_id for u in graph.list_by_member(child)]
        assert union.union_id in ids
        assert len(ids) == 2

    def test_list_by_member_empty(self, graph, add_member):
        assert graph.list_by_member(add_member("Loner")) == []


class TestSoftDelete:
    """Tests for soft deletion."""

    def test_soft_delete_keeps_record(self, graph, store, couple):
        """Should mark the union Deceased and clear the spouses' pointers."""
        a, b = couple
        union = graph.create_union(a, b)
        graph.soft_delete(union.union_id)

        assert graph.get_union(union.union_id).status == UnionStatus.DECEASED
        assert store.get_member(a).lineage_links.current_union_id is None
        assert store.get_member(b).lineage_links.current_union_id is None

    def test_pair_can_reunite_after_soft_delete(self, graph, couple):
        union = graph.create_union(*couple)
        graph.soft_delete(union.union_id)
        again = graph.create_union(*couple)
        assert again.union_id == "UNION_0002"

    def test_soft_delete_unknown(self, graph):
        with pytest.raises(NotFound):
            graph.soft_delete("UNION_9999")


class TestRepair:
    """Tests for back-pointer repair."""

    def test_repair_restores_stale_pointers(self, graph, store, add_member, couple):
        a, b = couple
        child = add_member("Ravi", "Male")
        union = graph.create_union(a, b, children_ids=[child])

        # Simulate a crash between the edge write and the pointer sync
        store.update_member(a, current_union_id=None)
        store.update_member(child, parental_union_id="UNION_0042")

        report = graph.repair_back_pointers()
        assert report.current_fixed == 1
        assert report.parental_fixed == 1
        assert store.get_member(a).lineage_links.current_union_id == union.union_id
        assert store.get_member(child).lineage_links.parental_union_id == union.union_id

    def test_repair_is_noop_when_consistent(self, graph, couple):
        graph.create_union(*couple)
        report = graph.repair_back_pointers()
        assert report.members_updated == 0
        assert report.members_checked == 2
