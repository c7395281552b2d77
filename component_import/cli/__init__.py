"""Command line interface (python -m component_import.cli)."""
