"""
Moniteur de connectivité

Ce module maintient l'état réseau du processus (Online / Offline) :
- Initialisation à partir de l'état réseau courant au démarrage
- Notifications de l'hôte (événements online/offline de la PWA)
- Sonde de disponibilité périodique quand aucune notification n'existe
- Appel des abonnés uniquement lors des transitions
"""

import threading
from typing import Callable, List, Optional

import psutil

from .models import ConnectivityState


class ConnectivityMonitor:
    """
    Propriétaire unique de l'état de connectivité

    Le moteur de synchronisation lit l'état ; seul ce moniteur le modifie.
    """

    def __init__(self, config, logger, sender=None, initial_state: Optional[ConnectivityState] = None):
        """
        Initialise le moniteur

        Args:
            config: Instance de ScannerConfig
            logger: Instance de ScannerLogger
            sender: ScanBatchSender utilisé par la sonde (test_connection)
            initial_state: État fourni par l'hôte ; sinon configuration puis sonde
        """
        self.config = config
        self.logger = logger.get_logger()
        self.sender = sender

        connectivity_config = config.get_connectivity_config()
        self.use_probe = connectivity_config['use_probe']
        self.probe_interval = connectivity_config['probe_interval']

        self._lock = threading.Lock()
        self._listeners: List[Callable[[ConnectivityState, ConnectivityState], None]] = []
        self._stop_event = threading.Event()
        self._probe_thread = None
        self.is_running = False

        if initial_state is None and connectivity_config['initial_state']:
            initial_state = ConnectivityState(connectivity_config['initial_state'].capitalize())
        if initial_state is None:
            initial_state = ConnectivityState.ONLINE if self.probe() else ConnectivityState.OFFLINE

        self._state = ConnectivityState(initial_state)
        self.transitions = 0

        self.logger.info(f"ConnectivityMonitor initialisé (état: {self._state.value})")

    @property
    def state(self) -> ConnectivityState:
        with self._lock:
            return self._state

    def is_online(self) -> bool:
        return self.state == ConnectivityState.ONLINE

    def add_listener(self, callback: Callable[[ConnectivityState, ConnectivityState], None]):
        """
        Enregistre un abonné appelé à chaque transition

        Args:
            callback: Fonction (ancien_état, nouvel_état)
        """
        self._listeners.append(callback)

    def set_online(self) -> bool:
        return self.update(ConnectivityState.ONLINE)

    def set_offline(self) -> bool:
        return self.update(ConnectivityState.OFFLINE)

    def update(self, new_state: ConnectivityState) -> bool:
        """
        Applique un nouvel état réseau

        Args:
            new_state: État notifié par l'hôte ou issu de la sonde

        Returns:
            bool: True si une transition a eu lieu
        """
        new_state = ConnectivityState(new_state)
        with self._lock:
            old_state = self._state
            if old_state == new_state:
                return False
            self._state = new_state
            self.transitions += 1

        self.logger.info(f"Connectivité: {old_state.value} -> {new_state.value}")

        for callback in list(self._listeners):
            try:
                callback(old_state, new_state)
            except Exception:
                self.logger.exception("Erreur dans un abonné de connectivité")

        return True

    def probe(self) -> bool:
        """
        Sonde de disponibilité : interface réseau active et API joignable

        Returns:
            bool: True si le réseau semble disponible
        """
        if not self._has_active_interface():
            self.logger.debug("Sonde: aucune interface réseau active")
            return False

        if self.sender is None:
            return True

        reachable, message = self.sender.test_connection()
        if not reachable:
            self.logger.debug(f"Sonde: API injoignable ({message})")
        return reachable

    def _has_active_interface(self) -> bool:
        try:
            stats = psutil.net_if_stats()
        except (OSError, RuntimeError) as e:
            self.logger.debug(f"Détection des interfaces impossible: {e}")
            # Sans information, on laisse l'appel API trancher
            return True

        for name, stat in stats.items():
            lowered = name.lower()
            if lowered == 'lo' or lowered.startswith('loopback') or lowered.startswith('lo0'):
                continue
            if stat.isup:
                return True
        return False

    def start(self):
        """
        Démarre la sonde périodique si les notifications ne sont pas disponibles
        """
        if not self.use_probe:
            self.logger.info("Sonde de connectivité désactivée (notifications de l'hôte)")
            return

        if self.is_running:
            self.logger.warning("Moniteur de connectivité déjà démarré")
            return

        self.is_running = True
        self._stop_event.clear()
        self._probe_thread = threading.Thread(
            target=self._probe_loop,
            name="ConnectivityProbe",
            daemon=True
        )
        self._probe_thread.start()
        self.logger.info(f"Sonde de connectivité démarrée (intervalle: {self.probe_interval}s)")

    def stop(self):
        if not self.is_running:
            return

        self.is_running = False
        self._stop_event.set()
        if self._probe_thread and self._probe_thread.is_alive():
            self._probe_thread.join(timeout=5)
        self.logger.info("Sonde de connectivité arrêtée")

    def _probe_loop(self):
        while not self._stop_event.wait(timeout=self.probe_interval):
            try:
                online = self.probe()
                self.update(ConnectivityState.ONLINE if online else ConnectivityState.OFFLINE)
            except Exception:
                self.logger.exception("Erreur dans la boucle de sonde de connectivité")

    def get_status(self) -> dict:
        return {
            'state': self.state.value,
            'use_probe': self.use_probe,
            'probe_interval': self.probe_interval,
            'probe_running': self.is_running,
            'transitions': self.transitions
        }
