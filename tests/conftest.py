"""Fixtures partagées des tests."""
from __future__ import annotations

from pathlib import Path

import pytest

from scanner.core.capture import CapturePipeline
from scanner.core.config import ScannerConfig
from scanner.core.conflict import ConflictResolver
from scanner.core.connectivity import ConnectivityMonitor
from scanner.core.exceptions import NetworkError
from scanner.core.logger import ScannerLogger
from scanner.core.models import BatchResult, RecordOutcome, Outcome, ConflictInfo, ConnectivityState
from scanner.core.store import ScanRecordStore
from scanner.core.sync_engine import SyncEngine


class FakeClock:
    """Horloge contrôlée par le test."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeLogisticsApi:
    """
    Double de ScanBatchSender simulant l'API d'ingestion.

    Le serveur applique chaque identifiant au plus une fois (clé d'idempotence).
    `script` contient des comportements consommés à chaque envoi :
      * "timeout" : lève NetworkError sans rien appliquer
      * "timeout_after_apply" : applique le lot puis lève NetworkError
      * callable(records) -> BatchResult
    """

    timeout = 1.0

    def __init__(self):
        self.batches = []
        self.effects = {}
        self.submissions = {}
        self.script = []
        self.conflicts = {}
        self.rejections = {}

    def send_batch(self, records):
        self.batches.append([record.id for record in records])
        behaviour = self.script.pop(0) if self.script else None

        if behaviour == "timeout":
            raise NetworkError("Timeout lors de l'envoi (>1.0s)")
        if callable(behaviour):
            return behaviour(records)

        result = self._ingest(records)
        if behaviour == "timeout_after_apply":
            raise NetworkError("Timeout lors de l'envoi (>1.0s)")
        return result

    def _ingest(self, records):
        result = BatchResult(status_code=200)
        for record in records:
            if record.id in self.conflicts:
                result.outcomes[record.id] = RecordOutcome(
                    id=record.id, outcome=Outcome.CONFLICT,
                    reason="Code déjà scanné dans un autre état",
                    conflict=ConflictInfo(kind=self.conflicts[record.id]),
                )
            elif record.id in self.rejections:
                result.outcomes[record.id] = RecordOutcome(
                    id=record.id, outcome=Outcome.REJECTED, reason=self.rejections[record.id]
                )
            else:
                self.submissions[record.id] = self.submissions.get(record.id, 0) + 1
                self.effects.setdefault(record.id, record.content)
                result.outcomes[record.id] = RecordOutcome(id=record.id, outcome=Outcome.CONFIRMED)
        return result

    def test_connection(self):
        return True, "Connexion OK"

    def get_stats(self):
        return {'total_attempts': len(self.batches)}


@pytest.fixture
def config(tmp_path: Path) -> ScannerConfig:
    """Configuration isolée dans un répertoire temporaire."""
    cfg = ScannerConfig(str(tmp_path / "scanner.ini"), environ={})
    cfg.set('storage', 'db_path', str(tmp_path / "data" / "scans.db"))
    cfg.set('logging', 'log_file', str(tmp_path / "logs" / "scanner.log"))
    cfg.set('api', 'base_url', 'http://api.test')
    cfg.set('connectivity', 'initial_state', 'online')
    cfg.set('connectivity', 'use_probe', 'false')
    cfg.set('capture', 'device_id', 'scanner-01')
    return cfg


@pytest.fixture
def logger(config: ScannerConfig) -> ScannerLogger:
    return ScannerLogger(config)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(config, logger, clock):
    s = ScanRecordStore(config, logger, clock=clock)
    yield s
    s.close()


@pytest.fixture
def pipeline(config, logger, store) -> CapturePipeline:
    return CapturePipeline(config, logger, store, session_id="session-test")


@pytest.fixture
def api() -> FakeLogisticsApi:
    return FakeLogisticsApi()


@pytest.fixture
def monitor(config, logger) -> ConnectivityMonitor:
    return ConnectivityMonitor(config, logger, initial_state=ConnectivityState.ONLINE)


@pytest.fixture
def resolver(config, logger) -> ConflictResolver:
    return ConflictResolver(config, logger)


@pytest.fixture
def engine(config, logger, store, api, monitor, resolver, clock) -> SyncEngine:
    e = SyncEngine(config, logger, store, api, monitor, resolver, clock=clock)
    yield e
    e.stop()
