"""
Module de logging pour le scanner logistique

Un seul logger applicatif ('ScannerLogistique'), configuré une fois :
- Fichier avec rotation (taille et nombre d'archives configurables)
- Sortie console simplifiée
- Nom du thread dans chaque ligne : moteur, sonde et planificateur
  tournent chacun dans leur propre thread
"""

import os
import sys
import logging
import logging.handlers


LOGGER_NAME = 'ScannerLogistique'

FILE_FORMAT = '%(asctime)s - %(levelname)s - [%(threadName)s] %(module)s:%(lineno)d - %(message)s'
CONSOLE_FORMAT = '%(levelname)s - [%(threadName)s] %(message)s'

DEFAULT_SETTINGS = {
    'level': 'INFO',
    'log_file': os.path.join(
        os.environ.get("TEMP", "C:\\temp") if sys.platform == "win32" else "/tmp",
        "scanner-logistique.log"
    ),
    'max_size': 10485760,  # 10MB
    'backup_count': 5,
}


class ScannerLogger:
    """
    Gestionnaire de logging du scanner

    Les composants ne manipulent jamais les handlers : ils reçoivent le
    logging.Logger configuré via get_logger().
    """

    def __init__(self, config=None):
        """
        Args:
            config: Instance de ScannerConfig (paramètres par défaut sinon)
        """
        self.config = config
        self.logger = logging.getLogger(LOGGER_NAME)

        # Configuré une seule fois par processus
        if not self.logger.handlers:
            self._setup_logging()

    def _setup_logging(self):
        settings = self.config.get_logging_config() if self.config else dict(DEFAULT_SETTINGS)
        level = getattr(logging, settings['level'].upper(), logging.INFO)
        self.logger.setLevel(level)

        file_handler = self._build_file_handler(settings)
        if file_handler is not None:
            file_handler.setLevel(level)
            self.logger.addHandler(file_handler)

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(level)
        console_handler.setFormatter(logging.Formatter(fmt=CONSOLE_FORMAT))
        self.logger.addHandler(console_handler)

        self.logger.info(
            f"Logging initialisé (niveau {settings['level']}, fichier {settings['log_file']})"
        )

    def _build_file_handler(self, settings):
        log_file = settings['log_file']
        try:
            log_dir = os.path.dirname(log_file)
            if log_dir:
                os.makedirs(log_dir, exist_ok=True)

            handler = logging.handlers.RotatingFileHandler(
                filename=log_file,
                maxBytes=settings['max_size'],
                backupCount=settings['backup_count'],
                encoding='utf-8'
            )
        except OSError as e:
            # Console seule : le scanner doit continuer à capturer
            print(f"Journal fichier indisponible ({log_file}): {e}")
            return None

        handler.setFormatter(logging.Formatter(fmt=FILE_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))
        return handler

    def get_logger(self) -> logging.Logger:
        """
        Retourne l'instance du logger

        Returns:
            logging.Logger: Instance du logger configuré
        """
        return self.logger

    def log_config_info(self, config):
        """
        Trace la configuration effective (après surcharges d'environnement)

        Args:
            config: Instance de ScannerConfig
        """
        self.logger.info("=== Configuration du scanner ===")

        sections = {
            'api': config.get_api_config(),
            'sync': config.get_sync_config(),
            'connectivity': config.get_connectivity_config(),
            'capture': config.get_capture_config(),
            'storage': config.get_storage_config(),
            'logging': config.get_logging_config(),
            'web': config.get_web_config(),
        }
        for prefix, values in sections.items():
            for key, value in values.items():
                self.logger.info(f"{prefix}.{key}: {value}")

        self.logger.info("=== Fin configuration ===")
