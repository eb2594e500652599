"""Swap graph construction"""

from .swap_graph_builder import SwapGraphBuilder, can_receive, parse_wanted_titles

__all__ = ["SwapGraphBuilder", "can_receive", "parse_wanted_titles"]
