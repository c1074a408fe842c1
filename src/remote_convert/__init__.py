"""
Remote Convert Service package.

Client for a job-based remote document conversion API, plus a FastAPI
front-end exposing the conversions as REST endpoints.
"""

__all__ = ["__version__"]

__version__ = "0.1.0"
