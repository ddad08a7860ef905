"""
Bulk Upload Job Queue

Background job queue for bulk record uploads: named queues with FIFO
executors, organization-scoped status reads, queue statistics and a
TTL reaper that reclaims stale job records.
"""

__version__ = "1.0.0"
