"""Explicit capabilities handed to privileged service operations."""
from dataclasses import dataclass


@dataclass(frozen=True)
class CronCapability:
    """Proof that the caller is the scheduled reminder/workflow trigger."""
    issued_to: str = "cron"
