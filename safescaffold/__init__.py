"""
safescaffold — render project templates into a directory without
ever silently destroying what is already there.
"""

__version__ = "0.1.0"
