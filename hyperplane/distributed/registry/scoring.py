"""
Placement scorers. Lower scores are preferred. The registry breaks
ties by drone id so identical snapshots always yield the same order.
"""

from typing import Callable

from .drone_record import DroneRecord


Scorer = Callable[[DroneRecord], float]


def least_loaded(record: DroneRecord) -> float:
    if record.capacity <= 0:
        return float("inf")

    return record.used / record.capacity


def most_loaded(record: DroneRecord) -> float:
    """Packs sessions onto the busiest drone that still has room."""
    if record.capacity <= 0:
        return float("inf")

    return -(record.used / record.capacity)
