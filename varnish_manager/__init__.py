"""Varnish Cache Manager - Varnish and Hitch installation and administration for cPanel/WHM."""

__version__ = "1.0.1"
