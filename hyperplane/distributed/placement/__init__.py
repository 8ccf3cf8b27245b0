from .placement_engine import (
    PendingAcceptance as PendingAcceptance,
    PlacementEngine as PlacementEngine,
    PlacementRun as PlacementRun,
)
