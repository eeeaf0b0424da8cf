"""HRFlow Backend - approval workflow engine for HR requests."""

__version__ = "0.1.0"
