"""Folio: portfolio content sections with a gated admin write path"""

__version__ = '1.0.0'
