"""
Reaper module.
Contains the lease reaper for recovering stalled jobs.
"""

from hookrelay.reaper.main import Reaper, run

__all__ = ["Reaper", "run"]
