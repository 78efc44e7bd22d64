"""
Module de configuration pour le scanner logistique

Ce module gère la configuration du moteur de synchronisation, incluant :
- Lecture des fichiers de configuration
- Surcharges par variables d'environnement (sans reconstruction)
- Validation des paramètres
- Valeurs par défaut
"""

import os
import sys
import socket
import configparser
from typing import Dict, Any, Optional, List


# Variable partagée avec la configuration runtime de la PWA
API_BASE_URL_ENV = "API_BASE_URL"
ENV_PREFIX = "SCANNER_"

VALID_LOG_LEVELS = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']


class ScannerConfig:
    """
    Gestionnaire de configuration pour le scanner logistique

    Cette classe centralise la configuration de l'API distante, du moteur de
    synchronisation, du moniteur de connectivité, du stockage local et de
    l'interface web locale.
    """

    def __init__(self, config_file: Optional[str] = None, environ: Optional[Dict[str, str]] = None):
        """
        Initialise la configuration

        Args:
            config_file: Chemin vers le fichier de configuration (optionnel)
            environ: Variables d'environnement à appliquer (os.environ par défaut)
        """
        self.config = configparser.ConfigParser()
        self.config_file = config_file or self._get_default_config_path()
        self.environ = os.environ if environ is None else environ

        # Définir les valeurs par défaut
        self._set_defaults()

        # Charger la configuration depuis le fichier
        self._load_config()

        # Les variables d'environnement sont prioritaires
        self._apply_env_overrides()

    def _get_default_config_path(self) -> str:
        """
        Détermine le chemin par défaut du fichier de configuration selon la plateforme

        Returns:
            str: Chemin vers le fichier de configuration
        """
        if sys.platform == "win32":
            return os.path.join(
                os.environ.get("PROGRAMDATA", "C:\\ProgramData"),
                "ScannerLogistique",
                "config.ini"
            )
        else:
            return "/etc/scanner-logistique/config.ini"

    def _get_default_data_dir(self) -> str:
        if sys.platform == "win32":
            return os.path.join(
                os.environ.get("PROGRAMDATA", "C:\\ProgramData"),
                "ScannerLogistique",
                "data"
            )
        else:
            return "/var/lib/scanner-logistique"

    def _set_defaults(self):
        """
        Définit les valeurs de configuration par défaut

        Ces valeurs sont des défauts raisonnables, toutes surchargeables
        par fichier ou par variable d'environnement.
        """
        # API distante
        self.config.add_section('api')
        self.config.set('api', 'base_url', 'http://localhost:3000/api')
        self.config.set('api', 'timeout', '15')
        self.config.set('api', 'verify_ssl', 'true')

        # Moteur de synchronisation
        self.config.add_section('sync')
        self.config.set('sync', 'batch_size', '50')
        self.config.set('sync', 'backoff_base', '2')
        self.config.set('sync', 'backoff_max', '300')
        self.config.set('sync', 'interval', '60')
        self.config.set('sync', 'retention_days', '7')

        # Moniteur de connectivité
        self.config.add_section('connectivity')
        self.config.set('connectivity', 'use_probe', '')  # vide = sonde seulement sans pont web
        self.config.set('connectivity', 'probe_interval', '30')
        self.config.set('connectivity', 'initial_state', '')  # vide = sonde au démarrage

        # Pipeline de capture
        self.config.add_section('capture')
        self.config.set('capture', 'max_content_length', '512')
        self.config.set('capture', 'device_id', '')

        # Stockage local
        self.config.add_section('storage')
        self.config.set('storage', 'db_path', os.path.join(self._get_default_data_dir(), 'scans.db'))

        # Configuration agent
        self.config.add_section('agent')
        self.config.set('agent', 'log_level', 'INFO')

        # Configuration logging
        self.config.add_section('logging')
        self.config.set('logging', 'log_file', self._get_default_log_path())
        self.config.set('logging', 'max_log_size', '10485760')  # 10MB
        self.config.set('logging', 'backup_count', '5')

        # Interface web locale (pont avec la PWA)
        self.config.add_section('web_interface')
        self.config.set('web_interface', 'enabled', 'true')
        self.config.set('web_interface', 'port', '18744')
        self.config.set('web_interface', 'host', '127.0.0.1')

    def _get_default_log_path(self) -> str:
        """
        Détermine le chemin par défaut des logs selon la plateforme

        Returns:
            str: Chemin vers le fichier de log
        """
        if sys.platform == "win32":
            return os.path.join(
                os.environ.get("PROGRAMDATA", "C:\\ProgramData"),
                "ScannerLogistique",
                "logs",
                "scanner.log"
            )
        else:
            return "/var/log/scanner-logistique/scanner.log"

    def _load_config(self):
        """
        Charge la configuration depuis le fichier

        Si le fichier n'existe pas, utilise les valeurs par défaut.
        """
        try:
            if os.path.exists(self.config_file):
                self.config.read(self.config_file, encoding='utf-8')
                print(f"Configuration chargée depuis: {self.config_file}")
            else:
                print(f"Fichier de configuration non trouvé: {self.config_file}")
                print("Utilisation des valeurs par défaut")

        except configparser.Error as e:
            print(f"Erreur lors du chargement de la configuration: {e}")
            print("Utilisation des valeurs par défaut")

    def _apply_env_overrides(self):
        """
        Applique les surcharges issues de l'environnement

        API_BASE_URL remplace api.base_url ; SCANNER_<SECTION>_<OPTION>
        remplace n'importe quelle clé connue.
        """
        for section in self.config.sections():
            for option in self.config.options(section):
                env_name = f"{ENV_PREFIX}{section.upper()}_{option.upper()}"
                if env_name in self.environ:
                    self.config.set(section, option, self.environ[env_name])

        api_base_url = self.environ.get(API_BASE_URL_ENV)
        if api_base_url:
            self.config.set('api', 'base_url', api_base_url)

    def get(self, section: str, option: str, fallback: Any = None) -> str:
        """
        Récupère une valeur de configuration

        Args:
            section: Nom de la section
            option: Nom de l'option
            fallback: Valeur par défaut si non trouvée

        Returns:
            str: Valeur de configuration
        """
        return self.config.get(section, option, fallback=fallback)

    def getboolean(self, section: str, option: str, fallback: bool = False) -> bool:
        """Récupère une valeur booléenne de configuration"""
        try:
            return self.config.getboolean(section, option, fallback=fallback)
        except ValueError:
            return fallback

    def getint(self, section: str, option: str, fallback: int = 0) -> int:
        """Récupère une valeur entière de configuration"""
        try:
            return self.config.getint(section, option, fallback=fallback)
        except ValueError:
            return fallback

    def getfloat(self, section: str, option: str, fallback: float = 0.0) -> float:
        """Récupère une valeur décimale de configuration"""
        try:
            return self.config.getfloat(section, option, fallback=fallback)
        except ValueError:
            return fallback

    def set(self, section: str, option: str, value):
        """
        Définit une valeur de configuration

        Args:
            section: Nom de la section
            option: Nom de l'option
            value: Nouvelle valeur
        """
        if not self.config.has_section(section):
            self.config.add_section(section)
        self.config.set(section, option, str(value))

    def save(self):
        """
        Sauvegarde la configuration dans le fichier

        Crée les dossiers parents si nécessaire.
        """
        config_dir = os.path.dirname(self.config_file)
        if config_dir and not os.path.exists(config_dir):
            os.makedirs(config_dir, exist_ok=True)

        with open(self.config_file, 'w', encoding='utf-8') as f:
            self.config.write(f)

        print(f"Configuration sauvegardée dans: {self.config_file}")

    def get_api_config(self) -> Dict[str, Any]:
        """
        Récupère la configuration de l'API distante

        Returns:
            dict: Configuration API
        """
        return {
            'base_url': (self.get('api', 'base_url') or '').rstrip('/'),
            'timeout': self.getfloat('api', 'timeout', 15.0),
            'verify_ssl': self.getboolean('api', 'verify_ssl', True)
        }

    def get_sync_config(self) -> Dict[str, Any]:
        """
        Récupère la configuration du moteur de synchronisation

        Returns:
            dict: Configuration de synchronisation
        """
        return {
            'batch_size': self.getint('sync', 'batch_size', 50),
            'backoff_base': self.getfloat('sync', 'backoff_base', 2.0),
            'backoff_max': self.getfloat('sync', 'backoff_max', 300.0),
            'interval': self.getint('sync', 'interval', 60),
            'retention_days': self.getint('sync', 'retention_days', 7)
        }

    def get_connectivity_config(self) -> Dict[str, Any]:
        """
        Récupère la configuration du moniteur de connectivité

        Sans valeur explicite, la sonde n'est active que si le pont web est
        désactivé : le pont relaie déjà les événements online/offline du shell.
        """
        if (self.get('connectivity', 'use_probe', '') or '').strip():
            use_probe = self.getboolean('connectivity', 'use_probe', True)
        else:
            use_probe = not self.get_web_config()['enabled']

        return {
            'use_probe': use_probe,
            'probe_interval': self.getfloat('connectivity', 'probe_interval', 30.0),
            'initial_state': (self.get('connectivity', 'initial_state', '') or '').strip()
        }

    def get_capture_config(self) -> Dict[str, Any]:
        device_id = (self.get('capture', 'device_id', '') or '').strip()
        return {
            'max_content_length': self.getint('capture', 'max_content_length', 512),
            'device_id': device_id or socket.gethostname()
        }

    def get_storage_config(self) -> Dict[str, Any]:
        return {
            'db_path': self.get('storage', 'db_path')
        }

    def get_logging_config(self) -> Dict[str, Any]:
        return {
            'level': self.get('agent', 'log_level', 'INFO') or 'INFO',
            'log_file': self.get('logging', 'log_file'),
            'max_size': self.getint('logging', 'max_log_size', 10485760),
            'backup_count': self.getint('logging', 'backup_count', 5)
        }

    def get_web_config(self) -> Dict[str, Any]:
        """
        Récupère la configuration de l'interface web locale

        Returns:
            dict: Configuration interface web
        """
        return {
            'enabled': self.getboolean('web_interface', 'enabled', True),
            'port': self.getint('web_interface', 'port', 18744),
            'host': self.get('web_interface', 'host', '127.0.0.1')
        }

    def get_errors(self) -> List[str]:
        """
        Liste les erreurs de la configuration courante

        Returns:
            list: Messages d'erreur (vide si la configuration est valide)
        """
        errors = []

        base_url = self.get('api', 'base_url')
        if not base_url or not base_url.startswith(('http://', 'https://')):
            errors.append("URL de l'API invalide")

        api_config = self.get_api_config()
        if api_config['timeout'] <= 0:
            errors.append("Timeout API invalide (doit être positif)")

        sync_config = self.get_sync_config()
        if sync_config['batch_size'] < 1:
            errors.append("Taille de lot invalide (doit être >= 1)")
        if sync_config['backoff_base'] <= 0:
            errors.append("Délai de base du backoff invalide")
        if sync_config['backoff_max'] < sync_config['backoff_base']:
            errors.append("Délai maximum du backoff inférieur au délai de base")
        if sync_config['interval'] < 1:
            errors.append("Intervalle de synchronisation invalide")

        initial_state = self.get_connectivity_config()['initial_state']
        if initial_state and initial_state.lower() not in ('online', 'offline'):
            errors.append("État de connectivité initial invalide (online, offline ou vide)")

        if self.getint('capture', 'max_content_length') < 1:
            errors.append("Longueur maximale de contenu invalide")

        log_level = (self.get('agent', 'log_level') or '').upper()
        if log_level not in VALID_LOG_LEVELS:
            errors.append("Niveau de log invalide")

        web_port = self.getint('web_interface', 'port')
        if not (1 <= web_port <= 65535):
            errors.append("Port interface web invalide (doit être entre 1 et 65535)")

        return errors

    def validate(self) -> bool:
        """
        Valide la configuration courante

        Returns:
            bool: True si la configuration est valide, False sinon
        """
        errors = self.get_errors()
        for error in errors:
            print(f"Erreur de configuration: {error}")
        return not errors


def create_default_config(config_path: str) -> ScannerConfig:
    """
    Crée un fichier de configuration par défaut

    Args:
        config_path: Chemin où créer le fichier de configuration

    Returns:
        ScannerConfig: Instance de configuration créée
    """
    config = ScannerConfig(config_path)
    config.save()
    return config
