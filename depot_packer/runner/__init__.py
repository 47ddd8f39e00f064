"""
External process boundary.

`ExternalRunner` is the interface the queue engine drives; `SubprocessRunner`
implements it with local DepotDownloader and 7-Zip binaries.
"""

from .base import ExternalRunner

__all__ = ["ExternalRunner"]
