"""Engine-Modul: Preise, Termine, Einschreibungen, Anwesenheit, Fortschritt.

Keine Re-Exporte hier, sonst entsteht ein Importzyklus mit storage.repository.
"""
