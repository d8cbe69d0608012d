"""AfterMeet background orchestration service.

Turns calendar meetings into recorded transcripts and social posts through
persistent job queues, a dispatcher and periodic reconciliation sweeps.
"""

__all__: list[str] = []
