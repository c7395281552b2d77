"""Bulk component import for piping/field-component tracking.

Reads spreadsheet exports of physical components, normalises their types,
expands quantities into numbered instances per drawing and persists them
together with their milestone records in PostgreSQL.
"""

__version__ = "0.1.0"
