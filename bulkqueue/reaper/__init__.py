"""
Reaper module.
Contains the TTL reaper for expired and stalled jobs.
"""

from bulkqueue.reaper.main import Reaper, run

__all__ = ["Reaper", "run"]
