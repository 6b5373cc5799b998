"""Dispatch of coding tasks to quota-limited CLI agents.

A task travels classify -> route -> execute -> account:

- ``classifier`` turns a free-text description into a ``Classification``
  using fixed keyword and complexity tables.
- ``routing`` ranks registered backends from category and complexity
  preference tables against a read-only quota snapshot.  Security-critical
  work is pinned to one backend with no fallback.
- ``quota`` owns per-credential usage.  Reservation is the single atomic
  gate; everything else only reads.
- ``backend`` spawns the agent CLI in its own process group, delivers the
  prompt via argv or stdin, and converts every failure into an
  ``ExecutionResult`` value.
- ``dispatcher`` walks the plan, reserving, executing and committing per
  attempt, and records one ``LedgerEntry`` per dispatch.
"""
