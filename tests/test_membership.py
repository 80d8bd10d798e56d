import itertools
import random

from meshcall.core.membership import RoomMembership


class TestRoomMembership:
    def test_add_is_idempotent(self):
        membership = RoomMembership()
        assert membership.add("A") is True
        assert membership.add("A") is False
        assert membership.members() == ["A"]

    def test_remove_is_idempotent(self):
        membership = RoomMembership()
        membership.add("A")
        assert membership.remove("A") is True
        assert membership.remove("A") is False
        assert membership.remove("never-there") is False
        assert len(membership) == 0

    def test_members_is_a_snapshot(self):
        membership = RoomMembership()
        membership.add("A")
        snapshot = membership.members()
        membership.add("B")
        snapshot.append("C")
        assert snapshot == ["A", "C"]
        assert membership.members() == ["A", "B"]

    def test_insertion_order_is_kept(self):
        membership = RoomMembership()
        for participant in ["C", "A", "B"]:
            membership.add(participant)
        assert membership.members() == ["C", "A", "B"]

    def test_clear_reports_change(self):
        membership = RoomMembership()
        assert membership.clear() is False
        membership.add("A")
        assert membership.clear() is True
        assert "A" not in membership

    def test_joined_minus_left_for_any_interleaving(self):
        events = [("join", "A"), ("join", "B"), ("join", "A"), ("leave", "B"), ("join", "C"), ("leave", "D")]
        for order in itertools.islice(itertools.permutations(events), 200):
            membership = RoomMembership()
            expected: set[str] = set()
            for kind, participant in order:
                if kind == "join":
                    membership.add(participant)
                    expected.add(participant)
                else:
                    membership.remove(participant)
                    expected.discard(participant)
            assert set(membership.members()) == expected

    def test_random_sequences_match_set_semantics(self):
        rng = random.Random(7)
        membership = RoomMembership()
        expected: set[str] = set()
        for _ in range(500):
            participant = rng.choice("ABCDE")
            if rng.random() < 0.6:
                membership.add(participant)
                expected.add(participant)
            else:
                membership.remove(participant)
                expected.discard(participant)
            assert set(membership.members()) == expected
            assert len(membership) == len(expected)
