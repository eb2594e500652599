"""
Swap Graph Builder using NetworkX

Nodes are active swap listings keyed by ``<user_id>-<book_id>``; each node
carries its ``ListingNode`` under the ``listing`` attribute. An edge A -> B
means B offers a book that A wants and the two books are compatible.
"""

from __future__ import annotations

import logging

import networkx as nx

from ..data.interfaces import SwapRepository
from ..geography import book_level_compatible, books_compatible
from ..logging_config import TRACE
from ..models import ListingNode, SwapListing

logger = logging.getLogger(__name__)


def parse_wanted_titles(raw: str | None) -> list[str]:
    """Split a comma-separated wish list, trimming and dropping empties."""
    if not raw:
        return []
    return [title.strip() for title in raw.split(",") if title.strip()]


def can_receive(wanting: ListingNode, offering: ListingNode, wanted_title: str | None = None) -> bool:
    """Whether ``offering``'s book can go to ``wanting``.

    With ``wanted_title`` only that wish is matched, otherwise any of them.
    """
    if offering.user_id == wanting.user_id:
        return False

    offered_title = offering.book.title.lower()
    wishes = [wanted_title] if wanted_title is not None else wanting.wanted_titles
    if not any(wanted.lower() in offered_title for wanted in wishes):
        return False

    if not books_compatible(
        wanting.book.grade,
        offering.book.grade,
        wanting.book.subject,
        offering.book.subject,
        wanting.book.condition,
        offering.book.condition,
    ):
        return False

    # Grade of the incoming book against the wanting user's own school
    return book_level_compatible(offering.book.grade, wanting.school.level)


class SwapGraphBuilder:
    """Builds the directed swap graph from current listings"""

    def __init__(self, repository: SwapRepository, default_reliability: float = 50.0):
        self.repository = repository
        self.default_reliability = default_reliability

    def load_nodes(self) -> list[ListingNode]:
        """Turn active listings into graph nodes, skipping unusable ones."""
        listings = self.repository.get_active_swap_listings()
        logger.info(f"Found {len(listings)} active swap listings")

        user_ids = {listing.seller_id for listing in listings}
        scores = self.repository.get_reliability_scores(user_ids) if user_ids else {}

        nodes: list[ListingNode] = []
        for listing in listings:
            node = self._to_node(listing, scores)
            if node is not None:
                nodes.append(node)
        return nodes

    def _to_node(self, listing: SwapListing, scores: dict) -> ListingNode | None:
        if listing.school is None:
            logger.debug(f"Skipping listing {listing.id}: owner has no school")
            return None

        wanted = parse_wanted_titles(listing.willing_to_swap_for)
        if not wanted:
            logger.debug(f"Skipping listing {listing.id}: no wanted titles")
            return None

        stored = scores.get(listing.seller_id)
        return ListingNode(
            user_id=listing.seller_id,
            user_name=listing.seller_name or "Unknown",
            school=listing.school,
            book=listing.book,
            wanted_titles=wanted,
            reliability_score=float(stored) if stored is not None else self.default_reliability,
        )

    def build_graph(self) -> nx.DiGraph:
        """Build a fresh graph from the repository.

        Node and successor iteration follow listing order, which keeps
        detection deterministic for an unchanged listing set.
        """
        logger.info("Building swap graph from active listings")
        graph = self.build_from_nodes(self.load_nodes())
        logger.info(f"Graph built: {graph.number_of_nodes()} nodes, {graph.number_of_edges()} edges")
        return graph

    @staticmethod
    def build_from_nodes(nodes: list[ListingNode]) -> nx.DiGraph:
        graph = nx.DiGraph()
        for node in nodes:
            graph.add_node(node.key, listing=node)

        # Successors are ordered by wish, then by listing order
        for wanting in nodes:
            for title in wanting.wanted_titles:
                for offering in nodes:
                    if graph.has_edge(wanting.key, offering.key):
                        continue
                    if can_receive(wanting, offering, title):
                        graph.add_edge(wanting.key, offering.key, wanted_title=title)
                        if logger.isEnabledFor(TRACE):
                            logger.log(TRACE, f"Edge {wanting.key} -> {offering.key} ({title})")
        return graph
