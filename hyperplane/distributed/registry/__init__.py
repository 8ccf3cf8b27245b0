from .drone_record import (
    DroneLiveness as DroneLiveness,
    DroneRecord as DroneRecord,
    LivenessChange as LivenessChange,
)
from .drone_registry import DroneRegistry as DroneRegistry
from .scoring import (
    Scorer as Scorer,
    least_loaded as least_loaded,
    most_loaded as most_loaded,
)
