"""Concrete adapters for the interfaces in :mod:`fieldkb.interfaces`."""
