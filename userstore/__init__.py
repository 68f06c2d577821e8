"""
Read-only federation core for OBP authuser identities.
"""

VERSION = "0.1.0"
