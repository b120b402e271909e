"""
Shared domain core for the restaurant loyalty wallet and ordering services.
"""

__version__ = "1.0.0"
