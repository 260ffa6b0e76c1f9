__all__ = [
    "LoadOrchestrator",
    "RoutingClient",
    "RunConfig",
    "Coordinate",
    "Statistics",
    "CancellationToken",
    "compute_stats",
    "sample_within_radius",
    "sample_in_annulus",
]


from .client import RoutingClient
from .coordinates import sample_in_annulus, sample_within_radius
from .core import LoadOrchestrator
from .metrics import compute_stats
from .models import Coordinate, RunConfig, Statistics
from .utils import CancellationToken
