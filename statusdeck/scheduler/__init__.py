"""Scheduler module for running the polling cadences."""

from .job_scheduler import JobScheduler

__all__ = ["JobScheduler"]
