"""
Point d'entrée principal du Scanner Logistique

Ce module assemble les composants du moteur hors-ligne et peut être exécuté
de différentes manières :
- En mode service (moteur de synchronisation + planificateur + pont web)
- En mode interface web seule
- En mode capture unique ou synchronisation unique
- En mode consultation (statut, liste des scans, purge)
"""

import sys
import json
import signal
import argparse
import threading

from scanner.core.config import ScannerConfig, create_default_config
from scanner.core.logger import ScannerLogger
from scanner.core.store import ScanRecordStore
from scanner.core.capture import CapturePipeline
from scanner.core.sender import ScanBatchSender
from scanner.core.connectivity import ConnectivityMonitor
from scanner.core.conflict import ConflictResolver
from scanner.core.sync_engine import SyncEngine
from scanner.core.scheduler import SyncScheduler
from scanner.core.exceptions import CaptureError
from scanner.core.models import ScanStatus, ConnectivityState


class ScannerAgent:
    """
    Agent principal du scanner

    Cette classe construit et relie les composants : stockage, capture,
    client API, moniteur de connectivité, résolveur et moteur.
    """

    def __init__(self, config_path=None, config=None, initial_state=None, session=None):
        """
        Initialise l'agent

        Args:
            config_path: Chemin vers le fichier de configuration
            config: Instance de ScannerConfig déjà construite (prioritaire)
            initial_state: État réseau fourni par l'hôte (sinon sonde)
            session: Session requests à utiliser pour l'API
        """
        self.config = config or ScannerConfig(config_path)

        self.logger = ScannerLogger(self.config)
        self.app_logger = self.logger.get_logger()

        # Stockage et récupération après arrêt brutal
        self.store = ScanRecordStore(self.config, self.logger)
        self.store.recover()

        self.pipeline = CapturePipeline(self.config, self.logger, self.store)
        self.sender = ScanBatchSender(self.config, self.logger, session=session)
        self.monitor = ConnectivityMonitor(self.config, self.logger, sender=self.sender,
                                           initial_state=initial_state)
        self.resolver = ConflictResolver(self.config, self.logger)
        self.engine = SyncEngine(self.config, self.logger, self.store, self.sender,
                                 self.monitor, self.resolver)
        self.scheduler = SyncScheduler(self.config, self.logger, self.engine, self.store)
        self.web_app = None

        self.running = False
        self._closed = False
        self.shutdown_event = threading.Event()

        self.logger.log_config_info(self.config)
        self.app_logger.info("Scanner Logistique initialisé")

    def start(self):
        """
        Démarre le moteur, la sonde de connectivité et le planificateur
        """
        self.monitor.start()
        self.engine.start()

        self.scheduler.start()

        self.running = True

    def start_web_interface(self):
        """
        Démarre le pont web dans un thread séparé
        """
        web_config = self.config.get_web_config()

        if not web_config['enabled']:
            self.app_logger.info("Interface web désactivée dans la configuration")
            return

        from scanner.web.app import ScannerWebApp

        self.web_app = ScannerWebApp(self)
        web_thread = threading.Thread(
            target=self.web_app.run,
            daemon=True,
            name="WebInterface"
        )
        web_thread.start()

        self.app_logger.info(f"Interface web démarrée - http://{web_config['host']}:{web_config['port']}")

    def run_service_mode(self):
        """
        Lance l'agent en mode service

        Ce mode démarre tous les composants et attend un signal d'arrêt.
        """
        self.app_logger.info("Démarrage du Scanner Logistique en mode service")

        try:
            self._setup_signal_handlers()
            self.start()
            self.start_web_interface()

            self.app_logger.info("Scanner Logistique démarré avec succès")

            while self.running and not self.shutdown_event.is_set():
                self.shutdown_event.wait(timeout=1.0)

        except KeyboardInterrupt:
            self.app_logger.info("Interruption clavier détectée")
        finally:
            self.shutdown()

    def run_web_only_mode(self):
        """
        Lance seulement le pont web (mode développement)
        """
        from scanner.web.app import ScannerWebApp

        self.app_logger.info("Démarrage en mode interface web seulement")
        self.web_app = ScannerWebApp(self)
        self.web_app.run(debug=False)

    def _setup_signal_handlers(self):
        """
        Configure les gestionnaires de signaux pour l'arrêt propre
        """
        def signal_handler(signum, frame):
            signal_name = signal.Signals(signum).name
            self.app_logger.info(f"Signal {signal_name} reçu - Arrêt en cours...")
            self.shutdown()

        if hasattr(signal, 'SIGTERM'):
            signal.signal(signal.SIGTERM, signal_handler)

        if hasattr(signal, 'SIGINT'):
            signal.signal(signal.SIGINT, signal_handler)

    def shutdown(self):
        """
        Arrête proprement tous les composants

        Une nouvelle tentative planifiée est simplement annulée : l'état est
        déjà persisté.
        """
        if self._closed:
            return
        self._closed = True

        self.app_logger.info("Arrêt du Scanner Logistique...")

        self.running = False
        self.shutdown_event.set()

        if self.scheduler.is_running:
            self.scheduler.stop()
        self.engine.stop()
        self.monitor.stop()
        self.store.close()

        self.app_logger.info("Scanner Logistique arrêté proprement")

    def get_status(self):
        """
        Retourne le statut de l'agent

        Returns:
            dict: Statut de tous les composants
        """
        status = {
            'running': self.running,
            'engine': self.engine.get_status(),
            'connectivity': self.monitor.get_status(),
            'capture': self.pipeline.get_stats(),
            'sender': self.sender.get_stats(),
            'scheduler': self.scheduler.get_status(),
            'config': {
                'file': self.config.config_file,
                'valid': not self.config.get_errors()
            }
        }
        return status


def main(argv=None):
    """
    Point d'entrée principal avec gestion des arguments de ligne de commande
    """
    parser = argparse.ArgumentParser(
        description='Scanner Logistique - Capture et synchronisation hors-ligne des scans'
    )

    parser.add_argument(
        '--config', '-c',
        type=str,
        help='Chemin vers le fichier de configuration'
    )

    parser.add_argument(
        '--mode', '-m',
        choices=['service', 'web', 'capture', 'sync', 'status', 'list', 'purge'],
        default='service',
        help='Mode de fonctionnement'
    )

    parser.add_argument(
        '--content',
        type=str,
        help='Contenu décodé à enregistrer (mode capture)'
    )

    parser.add_argument(
        '--status-filter',
        choices=[status.value for status in ScanStatus],
        help='Statut des scans à lister (mode list)'
    )

    parser.add_argument(
        '--online',
        action='store_true',
        help='Considère le réseau disponible sans sonde (modes sync et capture)'
    )

    parser.add_argument(
        '--create-config',
        action='store_true',
        help='Crée un fichier de configuration par défaut'
    )

    parser.add_argument(
        '--validate-config',
        action='store_true',
        help='Valide la configuration actuelle'
    )

    args = parser.parse_args(argv)

    if args.create_config:
        if not args.config:
            print("❌ --config est requis avec --create-config")
            return 1
        try:
            create_default_config(args.config)
            print(f"✅ Configuration par défaut créée: {args.config}")
            return 0
        except OSError as e:
            print(f"❌ Erreur création configuration: {e}")
            return 1

    if args.validate_config:
        config = ScannerConfig(args.config)
        if config.validate():
            print("✅ Configuration valide")
            return 0
        print("❌ Configuration invalide")
        return 1

    initial_state = ConnectivityState.ONLINE if args.online else None

    try:
        agent = ScannerAgent(args.config, initial_state=initial_state)
    except Exception as e:
        print(f"❌ Erreur initialisation: {e}")
        return 1

    try:
        if args.mode == 'service':
            agent.run_service_mode()

        elif args.mode == 'web':
            agent.run_web_only_mode()

        elif args.mode == 'capture':
            if not args.content:
                print("❌ --content est requis en mode capture")
                return 1
            try:
                record = agent.pipeline.capture(args.content)
            except CaptureError as e:
                print(f"❌ Capture refusée ({e.code}): {e.message}")
                return 1
            print(f"✅ Scan enregistré: {record.id}")

        elif args.mode == 'sync':
            report = agent.engine.run_once(force=True)
            print(json.dumps(report.to_dict(), indent=2, ensure_ascii=False))
            if report.error:
                return 1

        elif args.mode == 'status':
            print(json.dumps(agent.get_status(), indent=2, ensure_ascii=False))

        elif args.mode == 'list':
            if args.status_filter:
                records = agent.store.list_by_status(ScanStatus(args.status_filter))
            else:
                records = agent.store.list_all()
            print(json.dumps([record.to_dict() for record in records], indent=2, ensure_ascii=False))

        elif args.mode == 'purge':
            purged = agent.scheduler.force_purge()
            print(f"✅ {purged} scan(s) confirmé(s) purgé(s)")

        return 0

    except KeyboardInterrupt:
        print("\n🛑 Arrêt demandé par l'utilisateur")
        return 0

    finally:
        agent.shutdown()


if __name__ == '__main__':
    sys.exit(main())
