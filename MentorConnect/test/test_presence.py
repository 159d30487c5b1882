"""
Unit tests for the presence registry.
"""

from MentorConnect.core.server.presence import PresenceRegistry


class TestPresenceRegistry:
    """Tests for PresenceRegistry."""

    def setup_method(self):
        self.registry = PresenceRegistry()

    def test_register_marks_user_online(self):
        self.registry.register("alice", "c1")

        assert self.registry.is_online("alice")
        assert self.registry.connections_for("alice") == {"c1"}
        assert self.registry.user_for("c1") == "alice"
        assert "alice" in self.registry
        assert len(self.registry) == 1

    def test_register_is_idempotent(self):
        self.registry.register("alice", "c1")
        self.registry.register("alice", "c1")

        assert self.registry.connections_for("alice") == {"c1"}

    def test_multiple_connections_per_user(self):
        self.registry.register("alice", "c1")
        self.registry.register("alice", "c2")

        assert self.registry.connections_for("alice") == {"c1", "c2"}
        assert self.registry.online_user_ids() == {"alice"}

    def test_user_stays_online_until_last_connection_leaves(self):
        self.registry.register("alice", "c1")
        self.registry.register("alice", "c2")

        assert self.registry.unregister("c1") == "alice"
        assert self.registry.is_online("alice")

        assert self.registry.unregister("c2") == "alice"
        assert not self.registry.is_online("alice")
        assert "alice" not in self.registry
        assert self.registry.online_user_ids() == set()

    def test_unregister_unknown_connection(self):
        assert self.registry.unregister("missing") is None

    def test_register_moves_connection_between_users(self):
        self.registry.register("alice", "c1")
        self.registry.register("bob", "c1")

        assert not self.registry.is_online("alice")
        assert self.registry.user_for("c1") == "bob"
        assert self.registry.connections_for("bob") == {"c1"}

    def test_connections_for_returns_copy(self):
        self.registry.register("alice", "c1")

        conns = self.registry.connections_for("alice")
        conns.add("c2")

        assert self.registry.connections_for("alice") == {"c1"}

    def test_connections_for_unknown_user(self):
        assert self.registry.connections_for("nobody") == set()

    def test_snapshot_is_independent(self):
        self.registry.register("alice", "c1")
        snapshot = self.registry.snapshot()

        self.registry.register("alice", "c2")
        self.registry.register("bob", "c3")

        assert snapshot == {"alice": {"c1"}}
