"""
Redbook Automator

Extracts notes from a social-content site and fills its publish form
through a persistent browser session.
"""

__version__ = "0.1.0"
