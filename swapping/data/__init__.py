"""Storage access for the swap engine"""

from .interfaces import SwapRepository
from .memory_repository import InMemorySwapRepository
from .pocketbase_repository import PocketBaseSwapRepository

__all__ = ["InMemorySwapRepository", "PocketBaseSwapRepository", "SwapRepository"]
