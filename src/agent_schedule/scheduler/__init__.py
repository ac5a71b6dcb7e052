"""Job execution engine for scheduled agent CLI runs.

A single process owns the schedule: one loop thread ticks over the stored
jobs and runs the due ones sequentially, while on-demand runs and question
answers execute on their own threads. Each invocation is a subprocess of the
agent CLI whose ``stream-json`` output is rendered into a stored transcript.
Per-job exclusivity comes from the job status (``running``/``waiting``), not
from locks.
"""
