"""Tests du moteur de synchronisation hors-ligne."""
from __future__ import annotations

import time

import pytest

from scanner.core.exceptions import ConflictError, InvalidTransitionError, RecordNotFoundError
from scanner.core.models import BatchResult, ConflictKind, Resolution, ScanStatus
from scanner.core.sync_engine import EngineState, SyncEngine, compute_backoff


def wait_for(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


class TestComputeBackoff:

    @pytest.mark.parametrize("attempts,expected", [(0, 2.0), (1, 4.0), (3, 16.0), (8, 300.0)])
    def test_exponential_then_capped(self, attempts, expected):
        assert compute_backoff(attempts, 2, 300) == expected

    def test_monotone_and_bounded(self):
        delays = [compute_backoff(n, 2, 300) for n in range(200)]
        assert delays == sorted(delays)
        assert max(delays) == 300

    def test_negative_attempts_use_base(self):
        assert compute_backoff(-3, 2, 300) == 2


class TestOfflineCapture:

    def test_offline_captures_are_sent_in_order_when_online(self, pipeline, engine, monitor, store, api):
        monitor.set_offline()
        records = [pipeline.capture(code) for code in ("A-001", "A-002", "A-003")]

        report = engine.run_once()
        assert report.skipped_reason == 'offline'
        assert api.batches == []
        assert store.pending_count() == 3

        monitor.set_online()
        report = engine.run_once()

        assert report.attempted
        assert api.batches == [[r.id for r in records]]
        assert report.confirmed == 3
        assert all(store.get(r.id).status == ScanStatus.CONFIRMED for r in records)
        assert store.pending_count() == 0

    def test_force_never_bypasses_offline(self, pipeline, engine, monitor, api):
        pipeline.capture("A-001")
        monitor.set_offline()

        report = engine.run_once(force=True)
        assert report.skipped_reason == 'offline'
        assert api.batches == []

    def test_nothing_to_send(self, engine, api):
        report = engine.run_once()
        assert report.skipped_reason == 'empty'
        assert not report.attempted
        assert engine.state == EngineState.IDLE

    def test_batch_size_limits_each_attempt(self, config, logger, store, api, monitor, resolver, clock, pipeline):
        config.set('sync', 'batch_size', '2')
        engine = SyncEngine(config, logger, store, api, monitor, resolver, clock=clock)
        records = [pipeline.capture(f"B-{i}") for i in range(5)]

        engine.run_once()
        engine.run_once()
        engine.run_once()

        assert api.batches == [
            [records[0].id, records[1].id],
            [records[2].id, records[3].id],
            [records[4].id],
        ]


class TestNetworkFailures:

    def test_timeout_after_server_applied_is_idempotent(self, pipeline, engine, store, api, clock):
        api.script = ["timeout_after_apply"]
        record = pipeline.capture("C-001")

        first = engine.run_once()
        assert first.error is not None
        assert first.retry_in == compute_backoff(1, 2, 300)
        pending = store.get(record.id)
        assert pending.status == ScanStatus.PENDING
        assert pending.attempts == 1

        clock.advance(first.retry_in)
        second = engine.run_once()

        confirmed = store.get(record.id)
        assert second.confirmed == 1
        assert confirmed.status == ScanStatus.CONFIRMED
        assert confirmed.attempts == 2
        assert api.batches == [[record.id], [record.id]]
        assert len(api.effects) == 1

    def test_backoff_is_respected_unless_forced(self, pipeline, engine, api, clock):
        api.script = ["timeout"]
        pipeline.capture("C-002")

        engine.run_once()
        skipped = engine.run_once()
        assert skipped.skipped_reason == 'backoff'
        assert skipped.retry_in > 0
        assert len(api.batches) == 1

        forced = engine.run_once(force=True)
        assert forced.confirmed == 1
        assert len(api.batches) == 2

    def test_successive_delays_grow_until_the_cap(self, config, logger, store, api, monitor, resolver, clock, pipeline):
        config.set('sync', 'backoff_max', '10')
        engine = SyncEngine(config, logger, store, api, monitor, resolver, clock=clock)
        api.script = ["timeout"] * 5
        pipeline.capture("C-003")

        delays = []
        for _ in range(5):
            report = engine.run_once()
            delays.append(report.retry_in)
            clock.advance(report.retry_in)

        assert delays == [4.0, 8.0, 10.0, 10.0, 10.0]
        assert engine.run_once().confirmed == 1

    def test_coming_back_online_cancels_backoff(self, pipeline, engine, monitor, api):
        api.script = ["timeout"]
        pipeline.capture("C-004")
        engine.run_once()

        monitor.set_offline()
        monitor.set_online()

        report = engine.run_once()
        assert report.confirmed == 1

    def test_unexpected_error_releases_batch(self, pipeline, engine, store, api):
        def explode(records):
            raise RuntimeError("boom")

        api.script = [explode]
        record = pipeline.capture("C-005")

        with pytest.raises(RuntimeError):
            engine.run_once()

        assert store.get(record.id).status == ScanStatus.PENDING
        assert engine.state == EngineState.IDLE
        assert engine.run_once().confirmed == 1


class TestResults:

    def test_content_conflict_is_kept_out_of_later_batches(self, pipeline, engine, store, api):
        conflicted = pipeline.capture("D-001")
        api.conflicts[conflicted.id] = ConflictKind.CONTENT

        report = engine.run_once()
        assert report.conflicted == 1
        record = store.get(conflicted.id)
        assert record.status == ScanStatus.CONFLICTED
        assert record.last_error

        later = pipeline.capture("D-002")
        engine.run_once()
        assert api.batches[-1] == [later.id]
        assert store.get(conflicted.id).status == ScanStatus.CONFLICTED

    def test_duplicate_conflict_accepts_server_version(self, pipeline, engine, store, api):
        record = pipeline.capture("D-003")
        api.conflicts[record.id] = ConflictKind.DUPLICATE

        report = engine.run_once()
        assert report.confirmed == 1
        assert store.get(record.id).status == ScanStatus.CONFIRMED

    def test_rejection_marks_failed_with_reason(self, pipeline, engine, store, api):
        rejected, accepted = pipeline.capture("D-004"), pipeline.capture("D-005")
        api.rejections[rejected.id] = "Code-barres inconnu"

        report = engine.run_once()
        assert report.failed == 1
        assert report.confirmed == 1
        failed = store.get(rejected.id)
        assert failed.status == ScanStatus.FAILED
        assert failed.last_error == "Code-barres inconnu"
        assert store.get(accepted.id).status == ScanStatus.CONFIRMED

    def test_missing_results_are_requeued(self, pipeline, engine, store, api, clock):
        api.script = [lambda records: BatchResult(status_code=200)]
        record = pipeline.capture("D-006")

        report = engine.run_once()
        assert report.requeued == 1
        assert report.retry_in > 0
        assert store.get(record.id).status == ScanStatus.PENDING

        clock.advance(report.retry_in)
        assert engine.run_once().confirmed == 1

    def test_at_most_one_batch_in_flight(self, pipeline, engine, api):
        nested = []

        def send_while_busy(records):
            nested.append(engine.run_once())
            return api._ingest(records)

        api.script = [send_while_busy]
        pipeline.capture("D-007")
        engine.run_once()

        assert nested[0].skipped_reason == 'busy'
        assert len(api.batches) == 1


class TestSuspension:

    def test_checkpoint_before_sending_releases_batch(self, pipeline, engine, monitor, store, api, monkeypatch):
        record = pipeline.capture("E-001")
        original_claim = store.claim_pending

        def claim_then_lose_network(limit):
            claimed = original_claim(limit)
            monitor.set_offline()
            return claimed

        monkeypatch.setattr(store, "claim_pending", claim_then_lose_network)

        report = engine.run_once()
        assert report.skipped_reason == 'suspended'
        assert report.requeued == 1
        assert api.batches == []

        released = store.get(record.id)
        assert released.status == ScanStatus.PENDING
        assert released.attempts == 0

    def test_listener_follows_connectivity(self, engine, monitor):
        monitor.set_offline()
        assert engine.is_suspended
        monitor.set_online()
        assert not engine.is_suspended


class TestRecovery:

    def test_interrupted_batch_is_resent_after_restart(self, config, logger, pipeline, store, api, monitor, resolver, clock):
        record = pipeline.capture("F-001")
        store.claim_pending(10)

        # Redémarrage : le stockage remet le lot interrompu en attente
        assert store.recover() == 1
        engine = SyncEngine(config, logger, store, api, monitor, resolver, clock=clock)

        report = engine.run_once()
        assert report.confirmed == 1
        assert store.get(record.id).status == ScanStatus.CONFIRMED


class TestOperatorActions:

    def test_retry_failed_record(self, pipeline, engine, store, api):
        record = pipeline.capture("G-001")
        api.rejections[record.id] = "Emplacement fermé"
        engine.run_once()

        retried = engine.retry_record(record.id)
        assert retried.status == ScanStatus.PENDING

        del api.rejections[record.id]
        assert engine.run_once().confirmed == 1

    def test_retry_requires_failed_or_conflicted(self, pipeline, engine):
        record = pipeline.capture("G-002")
        with pytest.raises(InvalidTransitionError):
            engine.retry_record(record.id)

    def test_unknown_record(self, engine):
        with pytest.raises(RecordNotFoundError):
            engine.retry_record("inconnu")
        with pytest.raises(RecordNotFoundError):
            engine.resolve_conflict("inconnu", Resolution.KEEP_LOCAL)
        with pytest.raises(RecordNotFoundError):
            engine.acknowledge("inconnu")

    @pytest.mark.parametrize("resolution,expected", [
        (Resolution.ACCEPT_SERVER, ScanStatus.CONFIRMED),
        (Resolution.KEEP_LOCAL, ScanStatus.PENDING),
    ])
    def test_manual_resolution(self, pipeline, engine, api, resolution, expected):
        record = pipeline.capture("G-003")
        api.conflicts[record.id] = ConflictKind.CONTENT
        engine.run_once()

        resolved = engine.resolve_conflict(record.id, resolution)
        assert resolved.status == expected

    def test_resolution_requires_conflicted_record(self, pipeline, engine):
        record = pipeline.capture("G-004")
        with pytest.raises(ConflictError):
            engine.resolve_conflict(record.id, Resolution.ACCEPT_SERVER)

    def test_acknowledge_removes_failed_record(self, pipeline, engine, store, api):
        record = pipeline.capture("G-005")
        api.rejections[record.id] = "Doublon refusé"
        engine.run_once()

        assert engine.acknowledge(record.id) is True
        assert store.get(record.id) is None

    def test_acknowledge_refuses_pending_record(self, pipeline, engine, store):
        record = pipeline.capture("G-006")
        with pytest.raises(InvalidTransitionError):
            engine.acknowledge(record.id)
        assert store.get(record.id) is not None


class TestWorker:

    def test_background_loop_drains_queue(self, pipeline, engine, store, api):
        for i in range(3):
            pipeline.capture(f"H-{i}")

        engine.start()
        engine.trigger()

        assert wait_for(lambda: store.pending_count() == 0)
        assert store.count_by_status()['Confirmed'] == 3

    def test_stop_is_idempotent(self, engine):
        engine.start()
        engine.stop()
        engine.stop()
        assert not engine.is_running

    def test_status_reports_pending_count(self, pipeline, engine, monitor):
        monitor.set_offline()
        pipeline.capture("H-010")
        pipeline.capture("H-011")

        status = engine.get_status()
        assert status['pending_count'] == 2
        assert status['connectivity'] == 'Offline'
        assert status['suspended'] is True
        assert status['state'] == 'Idle'
