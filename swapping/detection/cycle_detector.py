"""
Swap cycle detection.

Runs a bounded depth-first search over the swap graph to enumerate closed
exchange rings of 2-5 users, ranks them by priority, drops rotations of
the same participant set and persists the best ones.
"""

from __future__ import annotations

import logging
import secrets
import time
from collections.abc import Iterator
from datetime import UTC, datetime, timedelta

import networkx as nx

from ..config.policy import LifecyclePolicy, ScoringWeights
from ..data.interfaces import SwapRepository
from ..drop_points import DropPointSelector
from ..geography import logistics_cost
from ..graph.swap_graph_builder import SwapGraphBuilder
from ..lifecycle.notifications import CycleNotifier
from ..models import CycleParticipant, CycleStatus, DetectedCycle, ListingNode, SwapCycle, to_decimal
from .scoring import remove_duplicate_cycles, score_cycle

logger = logging.getLogger(__name__)

MIN_CYCLE_SIZE = 2
MAX_CYCLE_SIZE = 5


def collection_qr_code(cycle_id: str, user_id: str) -> str:
    """Per-participant collection token; the random suffix makes it unguessable."""
    return f"CYCLE-{cycle_id}-USER-{user_id}-{secrets.token_hex(8)}"


class CycleDetector:
    """Finds, ranks and saves swap cycles"""

    def __init__(
        self,
        repository: SwapRepository,
        weights: ScoringWeights | None = None,
        policy: LifecyclePolicy | None = None,
        drop_points: DropPointSelector | None = None,
        notifier: CycleNotifier | None = None,
    ):
        self.repository = repository
        self.weights = weights or ScoringWeights()
        self.policy = policy or LifecyclePolicy()
        self.graph_builder = SwapGraphBuilder(repository, default_reliability=self.weights.default_reliability)
        self.drop_points = drop_points or DropPointSelector(repository)
        self.notifier = notifier or CycleNotifier(repository)

    def find_cycles(self, max_cycle_size: int = MAX_CYCLE_SIZE) -> list[DetectedCycle]:
        """Rebuild the graph and return unique cycles, best first.

        Raises:
            ValueError: If ``max_cycle_size`` is outside 2..5
        """
        if not MIN_CYCLE_SIZE <= max_cycle_size <= MAX_CYCLE_SIZE:
            raise ValueError(f"max_cycle_size must be between {MIN_CYCLE_SIZE} and {MAX_CYCLE_SIZE}")

        logger.info(f"Detecting swap cycles (max size: {max_cycle_size})")
        graph = self.graph_builder.build_graph()
        cycles = self.find_cycles_in_graph(graph, max_cycle_size)
        logger.info(f"Found {len(cycles)} potential cycles")

        cycles.sort(key=lambda c: c.priority_score, reverse=True)
        unique = remove_duplicate_cycles(cycles)
        logger.info(f"{len(unique)} unique cycles after deduplication")
        return unique

    def find_cycles_in_graph(self, graph: nx.DiGraph, max_cycle_size: int) -> list[DetectedCycle]:
        """Enumerate cycles from every start node not yet used by an emitted cycle.

        Once a cycle is emitted its node keys are consumed: they are never
        used as a start node again, although later searches may still pass
        through them.
        """
        consumed: set[str] = set()
        cycles: list[DetectedCycle] = []
        for start_key in graph.nodes:
            if start_key in consumed:
                continue
            for ring in self._rings_from(graph, start_key, max_cycle_size, consumed):
                cycle = score_cycle(ring, self.weights)
                if cycle is not None:
                    cycles.append(cycle)
        return cycles

    @staticmethod
    def _rings_from(
        graph: nx.DiGraph,
        start_key: str,
        max_cycle_size: int,
        consumed: set[str],
    ) -> Iterator[list[ListingNode]]:
        """Depth-first search with an explicit stack of successor iterators.

        ``path`` and ``stack`` always have the same length: ``stack[i]`` walks
        the successors of ``path[i]``. A neighbour owned by the start user
        closes a ring when the path already has two or more nodes; the
        search then moves on to the next sibling without descending.
        """
        start: ListingNode = graph.nodes[start_key]["listing"]
        path: list[ListingNode] = [start]
        users_in_path: set[str] = {start.user_id}
        stack: list[Iterator[str]] = [iter(graph.successors(start_key))]

        while stack:
            neighbor_key = next(stack[-1], None)
            if neighbor_key is None:
                stack.pop()
                finished = path.pop()
                users_in_path.discard(finished.user_id)
                continue

            neighbor: ListingNode = graph.nodes[neighbor_key]["listing"]

            if neighbor.user_id == start.user_id and len(path) >= MIN_CYCLE_SIZE:
                ring = list(path)
                consumed.update(node.key for node in ring)
                yield ring
                continue

            if neighbor.user_id in users_in_path or len(path) >= max_cycle_size:
                continue

            path.append(neighbor)
            users_in_path.add(neighbor.user_id)
            stack.append(iter(graph.successors(neighbor_key)))

    def _build_cycle(self, cycle: DetectedCycle, now: datetime) -> SwapCycle:
        """Cycle row with deadlines and a resolved drop point; the store assigns the id."""
        drop_point = self.drop_points.get_or_create([node.school for node in cycle.nodes])
        return SwapCycle(
            id="",
            cycle_type=cycle.cycle_type,
            status=CycleStatus.PENDING_CONFIRMATION,
            priority_score=to_decimal(cycle.priority_score),
            primary_county=cycle.primary_county,
            is_same_county=cycle.is_same_county,
            is_same_zone=cycle.is_same_zone,
            total_logistics_cost=to_decimal(cycle.total_cost),
            avg_cost_per_participant=to_decimal(cycle.avg_cost_per_participant),
            max_distance_km=to_decimal(cycle.max_distance_km),
            avg_distance_km=to_decimal(cycle.avg_distance_km),
            confirmation_deadline=now + timedelta(hours=self.policy.confirmation_window_hours),
            completion_deadline=now + timedelta(days=self.policy.completion_window_days),
            total_participants_count=cycle.size,
            confirmed_participants_count=0,
            drop_point_id=drop_point.id,
            drop_point_name=drop_point.name,
            drop_point_address=drop_point.address,
            created_at=now,
        )

    def _build_participants(self, cycle: DetectedCycle, cycle_id: str) -> list[CycleParticipant]:
        """One row per node; node i receives the book of node i+1 and pays that leg's cost."""
        participants = []
        size = cycle.size
        for position, node in enumerate(cycle.nodes):
            supplier = cycle.nodes[(position + 1) % size]
            participants.append(
                CycleParticipant(
                    cycle_id=cycle_id,
                    user_id=node.user_id,
                    school_id=node.school.id,
                    position_in_cycle=position,
                    book_to_give_id=node.book.id,
                    book_to_receive_id=supplier.book.id,
                    collection_qr_code=collection_qr_code(cycle_id, node.user_id),
                    logistics_cost=to_decimal(
                        logistics_cost(node.location, supplier.location, node.school.id, supplier.school.id)
                    ),
                    school_name=node.school.name,
                    school_county=node.location.county,
                    school_zone=node.location.zone,
                    school_latitude=node.location.latitude,
                    school_longitude=node.location.longitude,
                )
            )
        return participants

    def _discard(self, cycle_id: str) -> None:
        try:
            self.repository.delete_cycle(cycle_id)
        except Exception as e:
            logger.error(f"Could not remove partially saved cycle {cycle_id}: {e}", exc_info=True)

    def save_cycles(self, cycles: list[DetectedCycle]) -> int:
        """Persist cycles one by one; a failing cycle is logged and skipped.

        A cycle is stored with all of its participants or not at all: when a
        participant insert fails the cycle row and any rows already written
        are deleted again.

        Returns:
            Number of cycles saved
        """
        logger.info(f"Saving {len(cycles)} cycles")
        saved = 0
        for cycle in cycles:
            try:
                record = self.repository.create_cycle(self._build_cycle(cycle, datetime.now(UTC)))
            except Exception as e:
                logger.error(f"Error saving {cycle.cycle_type} cycle for users {cycle.user_ids}: {e}")
                continue

            try:
                stored = [self.repository.create_participant(p) for p in self._build_participants(cycle, record.id)]
            except Exception as e:
                logger.error(f"Error saving participants of cycle {record.id}, removing it: {e}")
                self._discard(record.id)
                continue

            saved += 1
            self.notifier.cycle_detected(record, stored)

        logger.info(f"Successfully saved {saved}/{len(cycles)} cycles")
        return saved

    def detect_and_save(self, max_cycle_size: int = MAX_CYCLE_SIZE, top_n: int = 50) -> int:
        """Detect cycles and persist the ``top_n`` best.

        Returns:
            Number of cycles saved
        """
        if top_n < 1:
            raise ValueError("top_n must be at least 1")

        started = time.monotonic()
        cycles = self.find_cycles(max_cycle_size)
        saved = self.save_cycles(cycles[:top_n])
        logger.info(f"Detection run finished in {time.monotonic() - started:.2f}s: {saved} cycles saved")
        return saved
