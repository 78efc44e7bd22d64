"""
Module de planification du scanner logistique

Ce module gère :
- Le déclenchement périodique du moteur de synchronisation
- La purge quotidienne des scans confirmés après la période de rétention
- Le démarrage et l'arrêt du thread de planification
"""

import threading
from datetime import datetime, timedelta

import schedule


class SyncScheduler:
    """
    Gestionnaire de planification du moteur de synchronisation

    Cette classe utilise le module 'schedule' pour déclencher le moteur à
    intervalle régulier et purger les scans confirmés anciens.
    """

    def __init__(self, config, logger, engine, store):
        """
        Initialise le scheduler

        Args:
            config: Instance de ScannerConfig
            logger: Instance de ScannerLogger
            engine: SyncEngine à déclencher
            store: ScanRecordStore à purger
        """
        self.config = config
        self.logger = logger.get_logger()
        self.engine = engine
        self.store = store

        sync_config = config.get_sync_config()
        self.interval = sync_config['interval']
        self.retention = timedelta(days=sync_config['retention_days'])

        # Planificateur dédié (pas l'instance globale du module)
        self.scheduler = schedule.Scheduler()

        # État du scheduler
        self.is_running = False
        self.scheduler_thread = None
        self.stop_event = threading.Event()
        self.last_purge = None

        self._setup_schedule()

        self.logger.info("SyncScheduler initialisé")

    def _setup_schedule(self):
        """
        Configure les tâches périodiques
        """
        self.scheduler.clear()

        self.scheduler.every(self.interval).seconds.do(self._scheduled_sync)
        self.logger.info(f"Synchronisation planifiée toutes les {self.interval} secondes")

        # Chaque jour à 03:00, hors des heures de pointe
        self.scheduler.every().day.at("03:00").do(self._scheduled_purge)
        self.logger.info(f"Purge quotidienne à 03:00 (rétention: {self.retention.days} jours)")

    def _scheduled_sync(self):
        """Tick périodique : réveille le moteur de synchronisation"""
        self.logger.debug("Tick de synchronisation planifié")
        self.engine.trigger()

    def _scheduled_purge(self):
        """
        Supprime les scans confirmés au-delà de la période de rétention
        """
        self.logger.info("=== Purge planifiée des scans confirmés ===")

        try:
            purged = self.store.purge_confirmed_older_than(self.retention)
            self.last_purge = datetime.now()
            self.logger.info(f"Purge terminée: {purged} scan(s) supprimé(s)")

        except Exception:
            self.logger.exception("Erreur lors de la purge planifiée")

    def start(self):
        """
        Démarre le scheduler en arrière-plan
        """
        if self.is_running:
            self.logger.warning("Scheduler déjà en cours d'exécution")
            return

        self.logger.info("Démarrage du scheduler...")

        self.is_running = True
        self.stop_event.clear()

        self.scheduler_thread = threading.Thread(
            target=self._scheduler_loop,
            name="SyncScheduler",
            daemon=True
        )
        self.scheduler_thread.start()

        self.logger.info("Scheduler démarré")

    def stop(self):
        """
        Arrête le scheduler
        """
        if not self.is_running:
            self.logger.warning("Scheduler pas en cours d'exécution")
            return

        self.logger.info("Arrêt du scheduler...")

        self.is_running = False
        self.stop_event.set()

        if self.scheduler_thread and self.scheduler_thread.is_alive():
            self.scheduler_thread.join(timeout=5)

        self.logger.info("Scheduler arrêté")

    def _scheduler_loop(self):
        """
        Boucle principale du scheduler
        """
        self.logger.debug("Boucle du scheduler démarrée")

        while not self.stop_event.is_set():
            try:
                self.scheduler.run_pending()

                # Attendre jusqu'à la prochaine tâche (ou l'arrêt), une seconde au plus
                idle = self.scheduler.idle_seconds
                timeout = 1.0 if idle is None else min(max(idle, 0.0), 1.0)
                self.stop_event.wait(timeout=timeout)

            except Exception:
                self.logger.exception("Erreur dans la boucle du scheduler")
                self.stop_event.wait(timeout=10)

        self.logger.debug("Boucle du scheduler terminée")

    def force_purge(self) -> int:
        """
        Force une purge immédiate

        Returns:
            int: Nombre de scans supprimés
        """
        self.logger.info("Purge forcée demandée")
        purged = self.store.purge_confirmed_older_than(self.retention)
        self.last_purge = datetime.now()
        return purged

    def get_status(self) -> dict:
        """
        Retourne le statut actuel du scheduler

        Returns:
            dict: Informations sur l'état du scheduler
        """
        next_run = self.scheduler.next_run
        return {
            'is_running': self.is_running,
            'interval_seconds': self.interval,
            'retention_days': self.retention.days,
            'next_run': next_run.isoformat() if next_run else None,
            'last_purge': self.last_purge.isoformat() if self.last_purge else None,
            'scheduled_jobs_count': len(self.scheduler.get_jobs())
        }
