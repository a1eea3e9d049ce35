"""
Top-level package for the Amore directory service.

This file makes ``amore_api`` a Python package so that modules within
``app`` can be imported using fully qualified names like
``amore_api.app.main``.  The package provides no public exports; all
functionality lives in submodules under ``app``.
"""

__all__ = []
