"""Import albums and photos into OneDrive through Microsoft Graph upload sessions."""

__version__ = "0.1.0"
