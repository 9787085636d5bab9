"""
Layered layout for workflow graphs.

Used by the editor to arrange nodes and by validation as a reachability
helper. Layers come from a breadth-first walk starting at every root
(node without incoming edges). A node is placed the first time the walk
reaches it and never moved afterwards, so a node reachable over paths of
different length sits at the depth of whichever path the BFS visits first,
not necessarily the longest one. Nodes the walk never reaches (isolated or
purely cyclic) go one layer below the deepest placed node.
"""

from collections import deque

from agentflow.graph.workflow import Edge, Node, Workflow

DEFAULT_START_X = 100.0
DEFAULT_START_Y = 100.0
DEFAULT_LAYER_SPACING = 300.0
DEFAULT_NODE_SPACING = 160.0


def _discover(nodes: list[Node], edges: list[Edge]) -> tuple[dict[str, int], list[str]]:
    """Return (layer by node id, node ids in discovery order)."""
    node_ids = [n.id for n in nodes]
    known = set(node_ids)
    has_incoming = {e.target for e in edges if e.source in known}

    successors: dict[str, list[str]] = {node_id: [] for node_id in node_ids}
    for edge in edges:
        if edge.source in known and edge.target in known:
            successors[edge.source].append(edge.target)

    layers: dict[str, int] = {}
    order: list[str] = []
    frontier: deque[str] = deque()

    for node_id in node_ids:
        if node_id not in has_incoming and node_id not in layers:
            layers[node_id] = 0
            order.append(node_id)
            frontier.append(node_id)

    while frontier:
        current = frontier.popleft()
        for target in successors[current]:
            if target in layers:
                continue
            layers[target] = layers[current] + 1
            order.append(target)
            frontier.append(target)

    leftover_layer = max(layers.values()) + 1 if layers else 0
    for node_id in node_ids:
        if node_id not in layers:
            layers[node_id] = leftover_layer
            order.append(node_id)

    return layers, order


def layerize(nodes: list[Node], edges: list[Edge]) -> dict[str, int]:
    """Map each node id to its layer index."""
    layers, _ = _discover(nodes, edges)
    return layers


def layout_positions(
    nodes: list[Node],
    edges: list[Edge],
    start_x: float = DEFAULT_START_X,
    start_y: float = DEFAULT_START_Y,
    layer_spacing: float = DEFAULT_LAYER_SPACING,
    node_spacing: float = DEFAULT_NODE_SPACING,
) -> dict[str, tuple[float, float]]:
    """
    Compute canvas coordinates.

    x grows with the layer, y with the node's rank inside its layer
    (discovery order).
    """
    layers, order = _discover(nodes, edges)
    rank_in_layer: dict[int, int] = {}
    positions: dict[str, tuple[float, float]] = {}
    for node_id in order:
        layer = layers[node_id]
        rank = rank_in_layer.get(layer, 0)
        rank_in_layer[layer] = rank + 1
        positions[node_id] = (start_x + layer * layer_spacing, start_y + rank * node_spacing)
    return positions


def apply_layout(workflow: Workflow, **spacing: float) -> Workflow:
    """Return a copy of ``workflow`` whose nodes carry layout coordinates."""
    positions = layout_positions(workflow.nodes, workflow.edges, **spacing)
    laid_out = workflow.model_copy(deep=True)
    for node in laid_out.nodes:
        node.x, node.y = positions[node.id]
    return laid_out


def reachable_from(start_id: str, edges: list[Edge]) -> set[str]:
    """Node ids reachable from ``start_id`` (inclusive)."""
    successors: dict[str, list[str]] = {}
    for edge in edges:
        successors.setdefault(edge.source, []).append(edge.target)

    seen = {start_id}
    frontier = deque([start_id])
    while frontier:
        current = frontier.popleft()
        for target in successors.get(current, []):
            if target not in seen:
                seen.add(target)
                frontier.append(target)
    return seen
