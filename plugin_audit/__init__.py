"""Rule-based compliance audits for WordPress plugin source trees."""

__version__ = "0.3.0"
