"""
Shared dependencies for the swap API.

This module provides:
- PocketBase client management (global instance, admin auth on startup)
- The engine services wired to PocketBase, built once per process
"""

from __future__ import annotations

import asyncio
import logging
from functools import lru_cache

from pocketbase import PocketBase

from swapping.config import ConfigLoader, LifecyclePolicy, ScoringWeights
from swapping.data import PocketBaseSwapRepository, SwapRepository
from swapping.detection import CycleDetector
from swapping.jobs import SwapScheduler
from swapping.lifecycle import CycleNotifier, CycleStateMachine, ReliabilityService

from .settings import get_settings

logger = logging.getLogger(__name__)

# ========================================
# PocketBase Client
# ========================================

# A single admin-authenticated client shared by requests and background jobs
_settings = get_settings()
pb_url = _settings.pocketbase_url
pb = PocketBase(pb_url)


async def authenticate_pb() -> None:
    """Authenticate with PocketBase as admin."""
    settings = get_settings()
    try:
        await asyncio.to_thread(
            pb.collection("_superusers").auth_with_password,
            settings.pocketbase_admin_email,
            settings.pocketbase_admin_password,
        )
        logger.info("Successfully authenticated with PocketBase")
    except Exception as e:
        logger.error(f"Failed to authenticate with PocketBase: {e}")
        raise


def get_pb_client() -> PocketBase:
    return pb


# ========================================
# Engine services
# ========================================


@lru_cache
def get_repository() -> SwapRepository:
    return PocketBaseSwapRepository(get_pb_client())


@lru_cache
def get_notifier() -> CycleNotifier:
    return CycleNotifier(get_repository())


@lru_cache
def get_state_machine() -> CycleStateMachine:
    repository = get_repository()
    policy = LifecyclePolicy.from_config()
    notifier = get_notifier()
    reliability = ReliabilityService(repository, notifier, policy)
    return CycleStateMachine(repository, reliability=reliability, notifier=notifier, policy=policy)


@lru_cache
def get_detector() -> CycleDetector:
    return CycleDetector(
        get_repository(),
        weights=ScoringWeights.from_config(),
        policy=LifecyclePolicy.from_config(),
        notifier=get_notifier(),
    )


@lru_cache
def get_scheduler() -> SwapScheduler:
    settings = get_settings()
    return SwapScheduler(
        get_detector(),
        get_state_machine(),
        detection_interval_seconds=settings.detection_interval_seconds,
        timeout_sweep_interval_seconds=settings.timeout_sweep_interval_seconds,
        max_cycle_size=settings.detection_max_cycle_size,
        top_n=settings.detection_top_n,
    )


def initialize_config() -> ConfigLoader:
    """Point the tunables loader at PocketBase and validate stored overrides."""
    return ConfigLoader.initialize(pb_client=get_pb_client())


__all__ = [
    "pb",
    "pb_url",
    "authenticate_pb",
    "get_pb_client",
    "get_repository",
    "get_notifier",
    "get_state_machine",
    "get_detector",
    "get_scheduler",
    "initialize_config",
]
