"""
Package interface web locale du scanner

Ce package fournit une API JSON Flask locale permettant au shell de la PWA :
- D'enregistrer les scans décodés
- De consulter le statut de synchronisation
- De traiter les scans en échec ou en conflit
"""
