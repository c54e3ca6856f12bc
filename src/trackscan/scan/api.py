# src/trackscan/scan/api.py
from __future__ import annotations

from pathlib import Path
from typing import Iterable, Optional, Union

from .aggregator import EventAggregator, ScanConfig, ScanResult, Scanner
from .diagnostics import DiagnosticSink
from .discovery import DiscoveryConfig, SourceUnit, iter_sources
from .signatures import SignatureRegistry


def scan_sources(
    units: Iterable[SourceUnit],
    registry: Optional[SignatureRegistry] = None,
    cfg: Optional[ScanConfig] = None,
) -> ScanResult:
    """Scan already-loaded sources. Events come back in input order, then source order."""
    return Scanner(registry, cfg).run(units)


def scan_path(
    root: Union[str, Path],
    registry: Optional[SignatureRegistry] = None,
    discovery: Optional[DiscoveryConfig] = None,
    cfg: Optional[ScanConfig] = None,
) -> ScanResult:
    """
    Discover sources under `root` and scan them. Read and decoding failures show
    up in the result's diagnostics next to parse failures.
    """
    sink = DiagnosticSink()
    scanner = Scanner(registry, cfg, aggregator=EventAggregator(sink))
    return scanner.run(iter_sources(Path(root), discovery, sink))
