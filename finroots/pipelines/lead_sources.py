import logging
from collections import Counter
from typing import Dict, Iterable, List, Optional

from ..models.schemas import LeadSourceMaster, Member

logger = logging.getLogger(__name__)

UNKNOWN_SOURCE = "Unknown"


class LeadSourceTree:
    """Parent-linked lead source masters indexed by id."""

    def __init__(self, nodes: Iterable[LeadSourceMaster]):
        self.nodes: Dict[str, LeadSourceMaster] = {node.id: node for node in nodes}

    def _chain(self, source_id: Optional[str]) -> Optional[List[LeadSourceMaster]]:
        """Node followed by its ancestors, or None if unknown or cyclic."""
        node = self.nodes.get(source_id) if source_id else None
        if node is None:
            return None
        chain = [node]
        visited = {node.id}
        while node.parent_id and node.parent_id in self.nodes:
            if node.parent_id in visited:
                logger.warning(f"Lead source hierarchy has a cycle at {node.parent_id}")
                return None
            node = self.nodes[node.parent_id]
            visited.add(node.id)
            chain.append(node)
        return chain

    def root_name(self, source_id: Optional[str]) -> str:
        chain = self._chain(source_id)
        if not chain:
            return UNKNOWN_SOURCE
        return chain[-1].name

    def path(self, source_id: Optional[str]) -> List[LeadSourceMaster]:
        """Nodes from the root category down to source_id."""
        chain = self._chain(source_id)
        return list(reversed(chain)) if chain else []

    def descendant_ids(self, source_id: str) -> List[str]:
        """Ids of every node below source_id."""
        children: Dict[str, List[str]] = {}
        for node in self.nodes.values():
            if node.parent_id:
                children.setdefault(node.parent_id, []).append(node.id)

        found: List[str] = []
        visited = {source_id}
        pending = list(children.get(source_id, []))
        while pending:
            node_id = pending.pop(0)
            if node_id in visited:
                continue
            visited.add(node_id)
            found.append(node_id)
            pending.extend(children.get(node_id, []))
        return found

    def distribution(self, members: Iterable[Member]) -> Dict[str, int]:
        counts = Counter(
            self.root_name(m.lead_source.source_id if m.lead_source else None)
            for m in members
        )
        return dict(counts)
