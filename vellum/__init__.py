"""Vellum: export markdown notes to PDF through Pandoc and Typst."""

__version__ = "0.1.0"
