"""
Price Sweep - active-listing price discovery for trading card catalogs.
"""

__version__ = "0.1.0"
