"""Import, browse and edit NCM tariff records from spreadsheets."""

__version__ = "0.1.0"
