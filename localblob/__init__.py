"""
LocalBlob: In-Process Blob Storage Emulator

A local, in-memory blob storage engine for offline development and testing.
"""

__version__ = "0.1.0"
__author__ = "LocalBlob Team"

from .services.blob.backend import BlobService

__all__ = ["BlobService", "__version__"]
