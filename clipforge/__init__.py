"""
ClipForge - AI video clipping backend.
"""

__version__ = "1.0.0"
