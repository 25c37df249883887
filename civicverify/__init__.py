"""civicverify -- multi-source verification of citizen policy claims."""

__version__ = "1.0.0"
