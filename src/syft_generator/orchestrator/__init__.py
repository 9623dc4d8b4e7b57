"""Admission-controlled orchestration of generation TaskRuns.

The orchestrator keeps an in-memory view of work consistent with a cluster
that reports asynchronously:

- Requests are queued FIFO and admitted on a periodic tick, never exceeding
  the configured number of concurrently active TaskRuns.
- TaskRun state is classified into finished, failed, or OOM-killed; OOM
  failures are retried with escalating memory without telling upstream
  consumers, everything else is reported and cleaned up.

Queue and registry live in process memory only; a restart loses pending work.
"""
