"""
Scanner Logistique - Moteur de capture et de synchronisation hors-ligne

Ce module principal fournit un agent qui enregistre durablement les scans
capturés hors-ligne et les synchronise avec l'API logistique centrale au
retour de la connectivité.

Author: Scanner Logistique Team
Version: 1.0.0
"""

__version__ = "1.0.0"
__author__ = "Scanner Logistique Team"

# Imports principaux pour faciliter l'utilisation
from .core.capture import CapturePipeline
from .core.config import ScannerConfig
from .core.logger import ScannerLogger
from .core.store import ScanRecordStore
from .core.sync_engine import SyncEngine

__all__ = ['CapturePipeline', 'ScannerConfig', 'ScannerLogger', 'ScanRecordStore', 'SyncEngine']
