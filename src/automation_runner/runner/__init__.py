"""Lease-based polling runner for automation jobs.

Why not APScheduler / Celery beat?
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Scheduling is not the hard part here: deciding *when* a cron job is due
happens elsewhere. What this package owns is crash-tolerant execution of a
job's tasks when any number of runner processes share one database:

- Ownership of a job is a lease column written by a conditioned ``UPDATE``;
  the affected-row count is the only arbiter between racing runners.
- Template tasks are cloned into execution tasks exactly once per run, so a
  runner that dies mid-job leaves state the next claimant can resume.
- Operator actions (stop, retry, resume) bypass the lease and are noticed by
  the runner through its own conditioned writes.

A broker would still need all of the above as custom task logic, and adds an
operational dependency to what is a single-database tool.
"""
