"""Filling of undefined leaves from their face neighbours."""

import heapq
import itertools
import math
from collections import deque
from dataclasses import dataclass, field
from typing import List, Optional

from tqdm import tqdm

from ..tree.hypertree import HyperTreeGrid, VonNeumannSuperCursor


@dataclass
class PendingLeaf:
    """Undefined leaf waiting for its neighbours.

    Attributes:
        node: Global node index
        rank: Number of defined neighbours summed so far
        total: Sum of the defined neighbour values
        display_total: Sum of the defined neighbour display values
        undefined: Neighbours still undefined
    """

    node: int
    rank: int
    total: float = 0.0
    display_total: float = 0.0
    undefined: List[int] = field(default_factory=list)

    def refresh(self, output: HyperTreeGrid, value_name: str, display_name: Optional[str]):
        """Add the neighbours that became defined since the last visit."""
        still_undefined = []
        for neighbor in self.undefined:
            value = output.get_value(value_name, neighbor)
            if math.isnan(value):
                still_undefined.append(neighbor)
                continue
            self.total += value
            if display_name is not None:
                self.display_total += output.get_value(display_name, neighbor)
            self.rank += 1
        self.undefined = still_undefined


def extrapolate_gaps(
    output: HyperTreeGrid,
    value_name: str,
    display_name: Optional[str] = None,
    show_progress: bool = False
) -> int:
    """Set undefined (NaN) unmasked leaves to the mean of their defined neighbours.

    Trees are swept breadth first. A leaf whose neighbours are all defined is
    set right away. The others are queued by their number of defined
    neighbours, highest first. All entries sharing the top rank are popped
    together and refreshed against the current values: an entry that gained
    neighbours and still misses some is queued again with its new rank, the
    others of the tier are written at once. Leaves without any defined
    neighbour stay NaN.

    Args:
        output: Generated hyper tree grid
        value_name: Name of the measured value array
        display_name: Name of the display value array (optional)
        show_progress: Whether to show a progress bar

    Returns:
        Number of leaves given a value
    """
    resolved = 0
    heap = []
    sequence = itertools.count()

    tree_indices = output.tree_indices()
    if show_progress:
        tree_indices = tqdm(tree_indices, desc="Extrapolating")

    for tree_index in tree_indices:
        queue = deque([output.root(tree_index)])
        while queue:
            node = queue.popleft()
            if output.is_masked(node):
                continue
            if not output.is_leaf(node):
                queue.extend(output.children(node))
                continue
            if not math.isnan(output.get_value(value_name, node)):
                continue

            pending = PendingLeaf(node, 0, undefined=VonNeumannSuperCursor(output, node).unmasked_neighbors())
            pending.refresh(output, value_name, display_name)
            if not pending.undefined:
                if pending.rank:
                    _commit(output, pending, value_name, display_name)
                    resolved += 1
                continue
            heapq.heappush(heap, (-pending.rank, next(sequence), pending))

    while heap:
        rank = -heap[0][0]
        tier = []
        while heap and -heap[0][0] == rank:
            tier.append(heapq.heappop(heap)[2])

        committed = []
        for pending in tier:
            pending.refresh(output, value_name, display_name)
            if pending.rank > rank and pending.undefined:
                heapq.heappush(heap, (-pending.rank, next(sequence), pending))
            else:
                committed.append(pending)

        # Values of a tier become visible together
        for pending in committed:
            if pending.rank:
                _commit(output, pending, value_name, display_name)
                resolved += 1

    return resolved


def _commit(output: HyperTreeGrid, pending: PendingLeaf, value_name: str, display_name: Optional[str]):
    output.set_value(value_name, pending.node, pending.total / pending.rank)
    if display_name is not None:
        output.set_value(display_name, pending.node, pending.display_total / pending.rank)
