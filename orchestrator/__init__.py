"""
Orchestrator Package - Scan Coordination Layer.

============================================================
PACKAGE OVERVIEW
============================================================
Runs one independent scan loop per chain, keeps the shared watchlist
snapshot fresh, and owns process startup and shutdown.

============================================================
CORE PRINCIPLES
============================================================
1. Chains never wait on each other
2. The watermark is the single commit point of a cycle
3. A decision is durable before its alert leaves the process
4. A chain that cannot persist halts instead of skipping ahead

============================================================
ARCHITECTURE
============================================================

    +-----------------------------------------------------+
    |                  ScanOrchestrator                   |
    |-----------------------------------------------------|
    |  ChainScanLoop  |  One per chain, own cadence      |
    |  Refresher      |  Swaps in watchlist snapshots    |
    |  CLI            |  run / init-db                   |
    +-----------------------------------------------------+

============================================================
QUICK START
============================================================
Command line usage::

    # Create tables
    python app.py init-db

    # Scan every configured chain
    python app.py run

    # One cycle on Tron only
    python app.py run --chains tron --once

============================================================
"""

from .models import CycleResult, LoopStatus
from .scanner import ChainScanLoop
from .core import (
    JsonFormatter,
    ScanOrchestrator,
    build_snapshot,
    create_orchestrator,
    setup_logging,
)


__all__ = [
    "ChainScanLoop",
    "CycleResult",
    "JsonFormatter",
    "LoopStatus",
    "ScanOrchestrator",
    "build_snapshot",
    "create_orchestrator",
    "setup_logging",
]
