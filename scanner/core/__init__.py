"""
Module Core - Composants principaux du scanner logistique

Ce module contient les fonctionnalités de base du scanner :
- Configuration et logging
- Stockage durable des scans
- Pipeline de capture
- Moteur de synchronisation, connectivité et résolution des conflits
- Planification des tâches
"""
