"""
Moteur de synchronisation hors-ligne

Ce module draine les scans en attente vers l'API logistique distante :
- Machine à états par tentative : Idle -> Collecting -> Sending -> {Applying, Retrying} -> Idle
- Au plus un lot en vol à la fois
- Backoff exponentiel borné après un échec réseau
- Réconciliation des résultats par enregistrement (confirmé, conflit, rejet)
- Suspension sur perte de connectivité, reprise immédiate au retour du réseau

L'état est persisté avant chaque transition : un arrêt brutal ne perd aucun
scan, la récupération du stockage remet les scans Syncing en Pending.
"""

import time
import threading
from enum import Enum
from typing import Dict, Any, List, Optional, Sequence

from .exceptions import NetworkError, ServerRejection, RecordNotFoundError, InvalidTransitionError
from .models import (
    ScanRecord, ScanStatus, BatchResult, Outcome, Resolution, SyncReport, ConnectivityState
)


# Statuts sur lesquels l'opérateur peut agir
_OPERATOR_STATUSES = (ScanStatus.FAILED, ScanStatus.CONFLICTED)


class EngineState(str, Enum):
    """États du moteur pendant une tentative de synchronisation"""
    IDLE = "Idle"
    COLLECTING = "Collecting"
    SENDING = "Sending"
    APPLYING = "Applying"
    RETRYING = "Retrying"


def compute_backoff(attempts: int, base: float, maximum: float) -> float:
    """
    Délai avant la prochaine tentative : min(maximum, base * 2^attempts)

    Args:
        attempts: Nombre de tentatives déjà effectuées
        base: Délai de base en secondes
        maximum: Délai maximum en secondes

    Returns:
        float: Délai en secondes
    """
    exponent = min(max(int(attempts), 0), 62)
    return min(float(maximum), float(base) * (2 ** exponent))


class SyncEngine:
    """
    Moteur de synchronisation des scans

    Déclenché par le moniteur de connectivité, par le planificateur ou par
    la fin d'un lot. Les appels réseau sont les seuls points de suspension.
    """

    def __init__(self, config, logger, store, sender, monitor, resolver, clock=time.monotonic):
        """
        Initialise le moteur

        Args:
            config: Instance de ScannerConfig
            logger: Instance de ScannerLogger
            store: ScanRecordStore
            sender: ScanBatchSender
            monitor: ConnectivityMonitor
            resolver: ConflictResolver
            clock: Horloge monotone (secondes)
        """
        self.config = config
        self.logger = logger.get_logger()
        self.store = store
        self.sender = sender
        self.monitor = monitor
        self.resolver = resolver
        self._clock = clock

        sync_config = config.get_sync_config()
        self.batch_size = sync_config['batch_size']
        self.backoff_base = sync_config['backoff_base']
        self.backoff_max = sync_config['backoff_max']

        # État du moteur
        self.state = EngineState.IDLE
        self._attempt_lock = threading.Lock()
        self._suspended = not monitor.is_online()
        self._retry_at = 0.0

        # Boucle de travail
        self.is_running = False
        self._worker_thread = None
        self._wake = threading.Event()
        self._stop_event = threading.Event()

        # Statistiques
        self.total_batches = 0
        self.total_confirmed = 0
        self.total_conflicted = 0
        self.total_failed = 0
        self.total_network_failures = 0
        self.last_report: Optional[SyncReport] = None

        monitor.add_listener(self._on_connectivity_change)

        self.logger.info("SyncEngine initialisé")
        self.logger.info(f"Taille de lot: {self.batch_size}, backoff: {self.backoff_base}s..{self.backoff_max}s")

    # Déclencheurs

    def trigger(self):
        """Demande une tentative de synchronisation au plus tôt"""
        self._wake.set()

    def suspend(self):
        """
        Suspend les nouvelles tentatives

        Une requête déjà acceptée par la couche réseau va jusqu'à son terme.
        """
        if not self._suspended:
            self._suspended = True
            self.logger.info("Synchronisation suspendue (hors-ligne)")

    def resume(self):
        """Reprend immédiatement la synchronisation et annule le backoff en cours"""
        was_suspended = self._suspended
        self._suspended = False
        self._retry_at = 0.0
        if was_suspended:
            self.logger.info("Synchronisation reprise (en ligne)")
        self.trigger()

    @property
    def is_suspended(self) -> bool:
        return self._suspended or not self.monitor.is_online()

    def _on_connectivity_change(self, old_state: ConnectivityState, new_state: ConnectivityState):
        if new_state == ConnectivityState.ONLINE:
            self.resume()
        else:
            self.suspend()

    # Tentative de synchronisation

    def run_once(self, force: bool = False) -> SyncReport:
        """
        Effectue une tentative de synchronisation d'un lot

        Args:
            force: Ignore le délai de backoff (jamais l'état hors-ligne)

        Returns:
            SyncReport: Bilan de la tentative
        """
        report = SyncReport()

        if not self._attempt_lock.acquire(blocking=False):
            report.skipped_reason = 'busy'
            return report

        claimed: List[str] = []
        try:
            if self.is_suspended:
                report.skipped_reason = 'offline'
                return report

            remaining = self._retry_at - self._clock()
            if not force and remaining > 0:
                report.skipped_reason = 'backoff'
                report.retry_in = remaining
                return report

            # Collecting
            self._set_state(EngineState.COLLECTING)
            batch = self.store.claim_pending(self.batch_size)
            if not batch:
                report.skipped_reason = 'empty'
                return report

            claimed = [record.id for record in batch]
            report.batch_size = len(batch)

            # Point de contrôle : suspension avant l'envoi
            if self.is_suspended:
                report.requeued = self.store.release(claimed)
                report.skipped_reason = 'suspended'
                self.logger.info(f"Lot de {len(claimed)} scan(s) remis en attente (suspension)")
                return report

            # Sending
            self._set_state(EngineState.SENDING)
            batch = self.store.record_attempt(claimed)
            report.attempted = True
            self.total_batches += 1

            try:
                result = self.sender.send_batch(batch)
            except NetworkError as e:
                self._retry_batch(batch, str(e), report)
                return report

            # Applying
            self._set_state(EngineState.APPLYING)
            self._apply_result(batch, result, report)
            return report

        except Exception as e:
            if claimed:
                self.store.release(claimed, error=f"Erreur interne: {e}")
            self.logger.exception("Erreur inattendue pendant la synchronisation")
            raise

        finally:
            self._set_state(EngineState.IDLE)
            self.last_report = report
            self._attempt_lock.release()

    def _retry_batch(self, batch: Sequence[ScanRecord], error: str, report: SyncReport):
        """
        Échec transitoire : remet le lot en attente et planifie la prochaine tentative
        """
        self._set_state(EngineState.RETRYING)

        attempts = max(record.attempts for record in batch)
        delay = compute_backoff(attempts, self.backoff_base, self.backoff_max)

        report.requeued = self.store.release([record.id for record in batch], error=error)
        report.retry_in = delay
        report.error = error
        self._retry_at = self._clock() + delay
        self.total_network_failures += 1

        self.logger.warning(
            f"Échec de synchronisation ({error}); {report.requeued} scan(s) remis en attente, "
            f"nouvelle tentative dans {delay:.1f}s"
        )

    def _apply_result(self, batch: Sequence[ScanRecord], result: BatchResult, report: SyncReport):
        """
        Applique les résultats par enregistrement, dans l'ordre de capture
        """
        missing = []

        for record in batch:
            outcome = result.get(record.id)

            if outcome is None:
                missing.append(record)

            elif outcome.outcome == Outcome.CONFIRMED:
                self.store.update_status(record.id, ScanStatus.CONFIRMED)
                report.confirmed += 1

            elif outcome.outcome == Outcome.CONFLICT:
                resolution = self.resolver.resolve(record, outcome.conflict)
                self._apply_resolution(record, resolution, outcome.reason, report)

            elif outcome.outcome == Outcome.REJECTED:
                rejection = ServerRejection(record.id, outcome.reason or "Rejeté par le serveur")
                self.store.update_status(record.id, ScanStatus.FAILED, error=rejection.reason)
                report.failed += 1
                self.logger.error(str(rejection))

        if missing:
            error = "Résultat absent de la réponse serveur"
            report.requeued += self.store.release([record.id for record in missing], error=error)
            attempts = max(record.attempts for record in missing)
            delay = compute_backoff(attempts, self.backoff_base, self.backoff_max)
            self._retry_at = self._clock() + delay
            report.retry_in = delay
            self.logger.warning(f"{len(missing)} scan(s) sans résultat, nouvelle tentative dans {delay:.1f}s")
        else:
            self._retry_at = 0.0

        self.total_confirmed += report.confirmed
        self.total_conflicted += report.conflicted
        self.total_failed += report.failed

        self.logger.info(
            f"Lot synchronisé: {report.confirmed} confirmé(s), {report.conflicted} en conflit, "
            f"{report.failed} rejeté(s), {report.requeued} remis en attente"
        )

    def _apply_resolution(self, record: ScanRecord, resolution: Resolution, reason: Optional[str], report: SyncReport):
        status = self.resolver.status_for(resolution)

        if status == ScanStatus.CONFIRMED:
            self.store.update_status(record.id, ScanStatus.CONFIRMED)
            report.confirmed += 1
        elif status == ScanStatus.PENDING:
            report.requeued += self.store.release([record.id], error=reason)
        else:
            self.store.update_status(record.id, ScanStatus.CONFLICTED, error=reason or "Conflit de contenu")
            report.conflicted += 1

    def _set_state(self, state: EngineState):
        if self.state != state:
            self.logger.debug(f"Moteur: {self.state.value} -> {state.value}")
            self.state = state

    # Actions de l'opérateur

    def retry_record(self, record_id: str) -> ScanRecord:
        """
        Remet en attente un scan Failed ou Conflicted

        Raises:
            RecordNotFoundError: identifiant inconnu
            InvalidTransitionError: statut incompatible
        """
        self._get_actionable(record_id)
        self.store.update_status(record_id, ScanStatus.PENDING)
        self.logger.info(f"Scan {record_id} remis en attente par l'opérateur")
        self.trigger()
        return self.store.get(record_id)

    def resolve_conflict(self, record_id: str, resolution: Resolution) -> ScanRecord:
        """
        Applique la décision de l'opérateur sur un scan en conflit

        Args:
            record_id: Identifiant du scan
            resolution: AcceptServer ou KeepLocal
        """
        record = self.store.get(record_id)
        if record is None:
            raise RecordNotFoundError(record_id)

        status = self.resolver.apply_manual(record, resolution)
        self.store.update_status(record_id, status)
        if status == ScanStatus.PENDING:
            self.trigger()
        return self.store.get(record_id)

    def acknowledge(self, record_id: str) -> bool:
        """
        Acquitte et retire un scan Failed ou Conflicted

        Seule une action explicite de l'opérateur supprime un tel scan.
        """
        record = self._get_actionable(record_id)
        deleted = self.store.delete(record_id)
        self.logger.info(f"Scan {record_id} ({record.status.value}) acquitté par l'opérateur")
        return deleted

    def _get_actionable(self, record_id: str) -> ScanRecord:
        record = self.store.get(record_id)
        if record is None:
            raise RecordNotFoundError(record_id)
        if record.status not in _OPERATOR_STATUSES:
            raise InvalidTransitionError(
                f"Action impossible sur le scan {record_id} (statut: {record.status.value})"
            )
        return record

    # Boucle de travail

    def start(self):
        """
        Démarre la boucle de synchronisation en arrière-plan
        """
        if self.is_running:
            self.logger.warning("Moteur de synchronisation déjà démarré")
            return

        self.is_running = True
        self._stop_event.clear()
        self._worker_thread = threading.Thread(
            target=self._worker_loop,
            name="SyncEngine",
            daemon=True
        )
        self._worker_thread.start()
        self.trigger()
        self.logger.info("Moteur de synchronisation démarré")

    def stop(self):
        """
        Arrête la boucle ; une nouvelle tentative planifiée ne sera pas déclenchée
        """
        if not self.is_running:
            return

        self.is_running = False
        self._stop_event.set()
        self._wake.set()
        if self._worker_thread and self._worker_thread.is_alive():
            self._worker_thread.join(timeout=self.sender.timeout + 5)
        self.logger.info("Moteur de synchronisation arrêté")

    def _worker_loop(self):
        self.logger.debug("Boucle du moteur démarrée")

        while not self._stop_event.is_set():
            self._wake.wait(timeout=self._next_wait())
            self._wake.clear()
            if self._stop_event.is_set():
                break

            try:
                self._drain()
            except Exception:
                self.logger.exception("Erreur dans la boucle du moteur de synchronisation")
                self._stop_event.wait(timeout=self.backoff_base)

        self.logger.debug("Boucle du moteur terminée")

    def _drain(self):
        """Enchaîne les lots tant qu'il reste des scans en attente"""
        while not self._stop_event.is_set():
            report = self.run_once()
            if not report.attempted or report.error or report.retry_in:
                return
            if not self.store.get_pending(limit=1):
                return

    def _next_wait(self) -> Optional[float]:
        remaining = self._retry_at - self._clock()
        return remaining if remaining > 0 else None

    def get_status(self) -> Dict[str, Any]:
        """
        Retourne l'état du moteur, dont le nombre de scans en attente

        Returns:
            dict: Statut du moteur
        """
        remaining = self._retry_at - self._clock()
        return {
            'state': self.state.value,
            'is_running': self.is_running,
            'connectivity': self.monitor.state.value,
            'suspended': self.is_suspended,
            'pending_count': self.store.pending_count(),
            'counts': self.store.count_by_status(),
            'next_retry_in': round(remaining, 1) if remaining > 0 else None,
            'total_batches': self.total_batches,
            'total_confirmed': self.total_confirmed,
            'total_conflicted': self.total_conflicted,
            'total_failed': self.total_failed,
            'total_network_failures': self.total_network_failures,
            'last_report': self.last_report.to_dict() if self.last_report else None
        }
