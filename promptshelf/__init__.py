"""
promptshelf: record lifecycle and data retention for the content-sharing platform.
"""

__version__ = "0.1.0"
