"""
Rotation service package.

Scheduling half of the trust layer: recurs each machine client's secret
through warn, rotate and reschedule using an external trigger facility,
an issuing provider and a notifier.
"""
