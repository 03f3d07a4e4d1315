from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional


@dataclass(frozen=True)
class NeighborFilter:
    """
    Optional restrictions applied to a nearest-neighbour lookup.

    Date bounds are inclusive and apply to the parsed incident date; chunks
    whose page has no incident date are excluded once either bound is set.
    """
    chunk_type: Optional[str] = None
    space_keys: List[str] = field(default_factory=list)
    date_from: Optional[date] = None
    date_to: Optional[date] = None
