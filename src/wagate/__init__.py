"""
wagate: multi-tenant gateway for browser-driven messaging sessions.
"""

__version__ = "0.1.0"
