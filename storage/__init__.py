"""Speicher-Modul (In-Process, JSON-Schnappschüsse)."""

from .repository import InstituteStore

__all__ = ["InstituteStore"]
