"""Tests for reconciler.py module."""

import threading
import time

import pytest

import reconciler
from conftest import make_backend
from reconciler import BackendSnapshot, ReconcileResult, Reconciler, reconcile


class TestReconcile:
    """Tests for the pure reconcile() function."""

    def test_bootstrap_emits_nothing(self):
        result = reconcile([], [make_backend("A", "s1", 100)], 10)

        assert result.updates == {}
        assert result.retirals == set()
        assert result.bootstrapped is True

    def test_empty_previous_and_current_is_not_a_bootstrap(self):
        result = reconcile([], [], 10)

        assert result == ReconcileResult()

    def test_normal_rate(self):
        result = reconcile(
            [make_backend("A", "s1", 100)], [make_backend("A", "s1", 150)], 10
        )

        assert result.updates == {("A", "s1"): 5.0}
        assert result.retirals == set()
        assert result.bootstrapped is False

    def test_unchanged_counter_gives_zero_rate(self):
        result = reconcile(
            [make_backend("A", "s1", 100)], [make_backend("A", "s1", 100)], 10
        )

        assert result.updates == {("A", "s1"): 0.0}

    def test_counter_reset_suppresses_rate_without_retiring(self):
        result = reconcile(
            [make_backend("A", "s1", 500)], [make_backend("A", "s1", 20)], 10
        )

        assert ("A", "s1") not in result.updates
        assert result.retirals == set()

    def test_missing_backend_is_retired(self):
        previous = [make_backend("A", "s1", 100), make_backend("A", "s2", 50)]
        current = [make_backend("A", "s1", 120)]

        result = reconcile(previous, current, 10)

        assert result.updates == {("A", "s1"): 2.0}
        assert result.retirals == {("A", "s2")}

    def test_new_backend_has_no_rate_until_next_cycle(self):
        previous = [make_backend("A", "s1", 100)]
        current = [make_backend("A", "s1", 110), make_backend("A", "s2", 5)]

        result = reconcile(previous, current, 10)

        assert result.updates == {("A", "s1"): 1.0}
        assert result.retirals == set()

        following = reconcile(
            current, [make_backend("A", "s1", 130), make_backend("A", "s2", 25)], 10
        )
        assert following.updates == {("A", "s1"): 2.0, ("A", "s2"): 2.0}

    def test_identity_includes_group(self):
        """The same server address in another upstream is a different backend."""
        previous = [make_backend("A", "10.0.0.1:80", 100)]
        current = [make_backend("B", "10.0.0.1:80", 200)]

        result = reconcile(previous, current, 10)

        assert result.updates == {}
        assert result.retirals == {("A", "10.0.0.1:80")}

    def test_all_backends_gone_retires_everything(self):
        previous = [make_backend("A", "s1", 1), make_backend("B", "s2", 2)]

        result = reconcile(previous, [], 10)

        assert result.updates == {}
        assert result.retirals == {("A", "s1"), ("B", "s2")}
        assert result.bootstrapped is False

    @pytest.mark.parametrize("elapsed", [0, 0.0, -5.0])
    def test_non_positive_elapsed_emits_nothing(self, elapsed):
        previous = [make_backend("A", "s1", 100), make_backend("A", "s2", 1)]
        current = [make_backend("A", "s1", 150)]

        result = reconcile(previous, current, elapsed)

        assert result.updates == {}
        # Retirement does not depend on the interval
        assert result.retirals == {("A", "s2")}

    def test_fractional_elapsed(self):
        result = reconcile(
            [make_backend("A", "s1", 0)], [make_backend("A", "s1", 3)], 0.5
        )

        assert result.updates == {("A", "s1"): pytest.approx(6.0)}

    def test_duplicate_keys_last_wins(self):
        previous = [make_backend("A", "s1", 100)]
        current = [make_backend("A", "s1", 900), make_backend("A", "s1", 110)]

        result = reconcile(previous, current, 10)

        assert result.updates == {("A", "s1"): 1.0}

    def test_find_duplicate_keys(self):
        snapshot = [
            make_backend("A", "s1", 1),
            make_backend("A", "s2", 1),
            make_backend("A", "s1", 2),
        ]

        assert reconciler.find_duplicate_keys(snapshot) == {("A", "s1")}
        assert reconciler.find_duplicate_keys(snapshot[:2]) == set()

    def test_snapshot_key(self):
        assert BackendSnapshot("up", "srv", 3).key == ("up", "srv")


class TestReconciler:
    """Tests for the stateful Reconciler."""

    def test_first_snapshot_becomes_baseline(self):
        engine = Reconciler()

        first = engine.reconcile([make_backend("A", "s1", 100)], now=0.0)
        second = engine.reconcile([make_backend("A", "s1", 150)], now=10.0)

        assert first.bootstrapped is True
        assert first.updates == {}
        assert second.updates == {("A", "s1"): 5.0}

    def test_state_is_replaced_in_full(self):
        engine = Reconciler()
        engine.reconcile([make_backend("A", "s1", 1), make_backend("A", "s2", 1)], now=0.0)

        engine.reconcile([make_backend("A", "s3", 1)], now=10.0)

        assert engine.previous == [make_backend("A", "s3", 1)]
        assert engine.live_keys() == {("A", "s3")}
        assert engine.last_cycle_at == 10.0

    def test_elapsed_measured_from_last_reconciliation(self):
        engine = Reconciler()
        engine.reconcile([make_backend("A", "s1", 0)], now=100.0)
        engine.reconcile([make_backend("A", "s1", 40)], now=120.0)

        result = engine.reconcile([make_backend("A", "s1", 100)], now=150.0)

        assert result.updates == {("A", "s1"): 2.0}

    def test_counter_reset_resumes_next_cycle(self):
        engine = Reconciler()
        engine.reconcile([make_backend("A", "s1", 500)], now=0.0)

        reset = engine.reconcile([make_backend("A", "s1", 20)], now=10.0)
        resumed = engine.reconcile([make_backend("A", "s1", 70)], now=20.0)

        assert reset.updates == {}
        assert reset.retirals == set()
        assert resumed.updates == {("A", "s1"): 5.0}

    def test_same_timestamp_emits_nothing_but_swaps_state(self):
        engine = Reconciler()
        engine.reconcile([make_backend("A", "s1", 100)], now=5.0)

        result = engine.reconcile([make_backend("A", "s1", 200)], now=5.0)

        assert result.updates == {}
        assert engine.previous == [make_backend("A", "s1", 200)]

    def test_empty_snapshot_clears_state_and_next_one_bootstraps(self):
        engine = Reconciler()
        engine.reconcile([make_backend("A", "s1", 100)], now=0.0)

        cleared = engine.reconcile([], now=10.0)
        reseeded = engine.reconcile([make_backend("A", "s1", 300)], now=20.0)

        assert cleared.retirals == {("A", "s1")}
        assert reseeded.bootstrapped is True
        assert reseeded.updates == {}

    def test_previous_returns_copy(self):
        engine = Reconciler()
        engine.reconcile([make_backend("A", "s1", 1)], now=0.0)

        engine.previous.clear()

        assert engine.previous == [make_backend("A", "s1", 1)]

    def test_duplicate_keys_log_warning(self, caplog):
        engine = Reconciler()

        with caplog.at_level("WARNING", logger="reconciler"):
            engine.reconcile(
                [make_backend("A", "s1", 1), make_backend("A", "s1", 2)], now=0.0
            )

        assert "duplicate" in caplog.text

    def test_reconciliations_never_overlap(self, monkeypatch):
        """Concurrent callers are serialized by the engine lock."""
        engine = Reconciler()
        active = []
        max_active = []
        guard = threading.Lock()
        original = reconciler.reconcile

        def slow_reconcile(previous, current, elapsed):
            with guard:
                active.append(1)
                max_active.append(len(active))
            time.sleep(0.01)
            with guard:
                active.pop()
            return original(previous, current, elapsed)

        monkeypatch.setattr(reconciler, "reconcile", slow_reconcile)

        def worker(offset: int) -> None:
            for i in range(5):
                engine.reconcile([make_backend("A", "s1", offset + i)], now=float(offset + i))

        threads = [threading.Thread(target=worker, args=(n * 100,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=5)

        assert len(max_active) == 20
        assert max(max_active) == 1
