"""Commun: REST backends generated from declarative entity configs."""

__version__ = "0.1.0"
