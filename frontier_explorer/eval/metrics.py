from frontier_explorer.explore.frontiers import classify
from frontier_explorer.slam.occupancy import OccupancyGridSnapshot


def explored_area_m2(snapshot: OccupancyGridSnapshot) -> float:
    """Calculates absolute explored (free or occupied) area in square meters."""
    _, _, unknown = classify(snapshot)
    known_cells = int((~unknown).sum())
    return known_cells * (snapshot.resolution ** 2)


def coverage_percent(snapshot: OccupancyGridSnapshot, navigable_area_m2: float = 0) -> float:
    """
    Calculates coverage percentage.
    If navigable_area_m2 is provided (>0), calculates % of that area.
    Otherwise, falls back to % of total grid size.
    """
    explored = explored_area_m2(snapshot)

    if navigable_area_m2 > 0:
        return min(100.0, 100.0 * explored / navigable_area_m2)

    total_m2 = snapshot.probabilities.size * (snapshot.resolution ** 2)
    if total_m2 == 0:
        return 0.0
    return 100.0 * explored / total_m2


def entropy_proxy(snapshot: OccupancyGridSnapshot) -> float:
    # Lower is better; simple proxy: fraction of UNKNOWN cells
    _, _, unknown = classify(snapshot)
    if unknown.size == 0:
        return 0.0
    return float(unknown.mean())
