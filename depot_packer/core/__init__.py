"""
Core queue engine for orchestrating download-and-package jobs.

This package contains the primary logic. The `QueueSession` owns the control
loop, delegating job starts and status transitions to the `QueueScheduler`,
login challenges to the `AuthChallengeCoordinator` and existing-output
prompts to the `OutputConflictResolver`.
"""
