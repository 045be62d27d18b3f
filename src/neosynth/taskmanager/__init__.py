"""Task manager: periodic expiry sweeps.

Emulates store-level TTL expiry for sessions, temporary codes and API keys,
and clears expired in-memory step tokens and drained rate-limit windows.
"""

from __future__ import annotations

from neosynth.taskmanager.manager import CronJob, JobStatus, TaskManager

__all__ = ["CronJob", "JobStatus", "TaskManager"]
