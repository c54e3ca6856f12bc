# src/trackscan/scan/__main__.py
from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from .aggregator import ScanConfig
from .api import scan_path
from .defaults import default_registry
from .discovery import DiscoveryConfig
from .signatures import RegistryError, SignatureRegistry, load_registry

logger = logging.getLogger(__name__)


def run_scan_on_path(
    root: Path,
    *,
    registry: Optional[SignatureRegistry] = None,
    out_dir: Optional[Path] = None,
    discovery: Optional[DiscoveryConfig] = None,
    cfg: Optional[ScanConfig] = None,
) -> Dict[str, Any]:
    """
    Embeddable entry: scan `root` and return the JSON-serializable result.

    With `out_dir`, the result is also persisted as Parquet and the run receipt
    is returned under "receipt".
    """
    result = scan_path(Path(root), registry, discovery, cfg)
    payload = result.to_dict()
    if out_dir is not None:
        from .store import EventStore

        payload["receipt"] = EventStore(Path(out_dir)).write(result, receipt={"root": str(root)})
        payload["out_dir"] = str(out_dir)
    return payload


def build_registry(
    registry_path: Optional[str],
    custom_functions: Sequence[str],
    *,
    use_defaults: bool = True,
) -> SignatureRegistry:
    if registry_path:
        registry = load_registry(registry_path)
    elif use_defaults:
        registry = default_registry()
    else:
        registry = SignatureRegistry()
    if custom_functions:
        registry = registry.with_custom_functions(custom_functions)
    return registry


def _parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="trackscan",
        description="Find analytics tracking calls in Python, JavaScript/TypeScript, Ruby and Go sources.",
    )
    p.add_argument("path", help="Directory to scan")
    p.add_argument("--registry", help="JSON registry document (replaces the built-in SDK table)")
    p.add_argument(
        "-c",
        "--custom-function",
        action="append",
        default=[],
        metavar="SIG",
        help='Custom tracking function, e.g. "trackEvent(userId, EVENT_NAME, PROPERTIES)". Repeatable.',
    )
    p.add_argument("--no-defaults", action="store_true", help="Do not load the built-in SDK signatures")
    p.add_argument("--workers", type=int, default=None, help="Parallel file workers")
    p.add_argument("--timeout", type=float, default=None, help="Per-file timeout in seconds")
    p.add_argument("--out", default=None, help="Also write Parquet output to this directory")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return p


def main(argv: Optional[List[str]] = None) -> int:
    args = _parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        registry = build_registry(args.registry, args.custom_function, use_defaults=not args.no_defaults)
    except RegistryError as e:
        logger.error("%s", e)
        print(f"trackscan: {e}", file=sys.stderr)
        return 2

    root = Path(args.path)
    if not root.is_dir():
        print(f"trackscan: not a directory: {root}", file=sys.stderr)
        return 2

    cfg = ScanConfig()
    if args.workers is not None or args.timeout is not None:
        cfg = ScanConfig(
            per_file_timeout_sec=args.timeout if args.timeout is not None else cfg.per_file_timeout_sec,
            max_workers=args.workers if args.workers is not None else cfg.max_workers,
        )

    payload = run_scan_on_path(
        root,
        registry=registry,
        out_dir=Path(args.out) if args.out else None,
        cfg=cfg,
    )
    print(json.dumps(payload, indent=2, ensure_ascii=False))
    return 0


if __name__ == "__main__":
    sys.exit(main())
