"""
FastAPI routers for the clipping backend.
"""

from clipforge.routers import health, videos

__all__ = ["health", "videos"]
