# src/trackscan/scan/store.py
from __future__ import annotations

import hashlib
import json
import logging
import shutil
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

# Parquet / Arrow
try:
    import pyarrow as pa
    import pyarrow.parquet as pq
except Exception as e:  # pragma: no cover
    _PA_IMPORT_ERROR = e
else:
    _PA_IMPORT_ERROR = None

from .aggregator import ScanResult
from .diagnostics import Diagnostic
from .events import TrackingEvent

logger = logging.getLogger(__name__)

SCHEMA_VERSION = "1.0"


class EventStore:
    """
    Parquet persistence for one scan result:
      - events.parquet / diagnostics.parquet, ZSTD compressed
      - literal values stored as JSON text in their tagged form
      - verified writes (read-back row counts)
      - atomic publish (staging -> out_dir) with run_receipt.json
    """

    def __init__(
        self,
        out_dir: Path,
        *,
        zstd_level: int = 7,
        staging_suffix: str = ".staging",
    ) -> None:
        if _PA_IMPORT_ERROR is not None:
            raise RuntimeError(f"pyarrow is required: {_PA_IMPORT_ERROR}")

        self.out_dir = Path(out_dir)
        self.zstd_level = int(zstd_level)
        self._staging = Path(str(self.out_dir) + staging_suffix)
        self._pq_write_kwargs = dict(
            compression="zstd",
            compression_level=self.zstd_level,
            use_dictionary=True,
            write_statistics=True,
        )

    def write(self, result: ScanResult, *, receipt: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Write the result into a fresh staging directory, then publish it as
        out_dir. Returns the run receipt.
        """
        if self._staging.exists():
            shutil.rmtree(self._staging, ignore_errors=True)
        self._staging.mkdir(parents=True, exist_ok=True)

        try:
            events_rows = self._verified_write(
                _events_table(result.events), self._staging / "events.parquet"
            )
            diag_rows = self._verified_write(
                _diagnostics_table(result.diagnostics), self._staging / "diagnostics.parquet"
            )

            meta: Dict[str, Any] = {
                "schema_version": SCHEMA_VERSION,
                "event_rows": events_rows,
                "diagnostic_rows": diag_rows,
                "aborted": result.aborted,
                "counters": dict(sorted(result.counters.items())),
                "compression": {"algorithm": "zstd", "level": self.zstd_level},
                "created_at_epoch": int(time.time()),
                "created_at_iso": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            }
            meta.update(receipt or {})
            meta["integrity"] = self._compute_integrity_hashes()
            (self._staging / "run_receipt.json").write_text(json.dumps(meta, indent=2), encoding="utf-8")

            self._atomic_publish()
        except Exception:
            shutil.rmtree(self._staging, ignore_errors=True)
            raise

        logger.info("wrote %d events and %d diagnostics to %s", events_rows, diag_rows, self.out_dir)
        return meta

    # ----------------------------- internals ----------------------------------

    def _verified_write(self, tbl: "pa.Table", path: Path) -> int:
        """Write Parquet and verify on disk; clean up on failure. Returns row count."""
        try:
            meta = dict(tbl.schema.metadata or {})
            meta[b"version"] = SCHEMA_VERSION.encode("utf-8")
            tbl = tbl.replace_schema_metadata(meta)

            pq.write_table(tbl, path, **self._pq_write_kwargs)

            if not path.exists() or path.stat().st_size == 0:
                raise RuntimeError(f"Failed to write {path}")

            written = pq.read_table(path)
            if written.num_rows != tbl.num_rows:
                raise RuntimeError(f"Row count mismatch: expected {tbl.num_rows}, got {written.num_rows}")
            return tbl.num_rows
        except Exception as e:
            path.unlink(missing_ok=True)
            raise RuntimeError(f"Parquet write verification failed for {path}: {e}") from e

    def _compute_integrity_hashes(self) -> Dict[str, str]:
        hashes: Dict[str, str] = {}
        for file_path in sorted(self._staging.rglob("*.parquet")):
            hashes[file_path.relative_to(self._staging).as_posix()] = hashlib.blake2b(
                file_path.read_bytes(), digest_size=16
            ).hexdigest()
        return hashes

    def _atomic_publish(self) -> None:
        # Replace existing out_dir, keeping the previous one as .bak
        if self.out_dir.exists():
            backup = Path(str(self.out_dir) + ".bak")
            if backup.exists():
                shutil.rmtree(backup, ignore_errors=True)
            self.out_dir.replace(backup)
        self.out_dir.parent.mkdir(parents=True, exist_ok=True)
        self._staging.replace(self.out_dir)


# ============================== schemas & mapping ==============================


def _event_schema() -> "pa.Schema":
    return pa.schema(
        [
            pa.field("seq", pa.int64()),
            pa.field("file", pa.string()),
            pa.field("line", pa.int64()),
            pa.field("column", pa.int64()),
            pa.field("origin_kind", pa.string()),
            pa.field("origin_name", pa.string()),
            pa.field("function", pa.string()),
            pa.field("event_name", pa.string()),             # JSON
            pa.field("user_id", pa.string()),                # JSON, null when absent
            pa.field("properties", pa.string()),             # JSON
            pa.field("extras", pa.string()),                 # JSON
            pa.field("unresolved_properties", pa.string()),
            pa.field("unresolved_entries", pa.list_(pa.string())),
        ]
    ).with_metadata({"version": SCHEMA_VERSION})


def _diagnostic_schema() -> "pa.Schema":
    return pa.schema(
        [
            pa.field("file", pa.string()),
            pa.field("message", pa.string()),
            pa.field("kind", pa.string()),
            pa.field("severity", pa.string()),
            pa.field("detail", pa.string()),
            pa.field("line", pa.int64()),
        ]
    ).with_metadata({"version": SCHEMA_VERSION})


def _json(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


def _events_table(events: "tuple[TrackingEvent, ...]") -> "pa.Table":
    rows: List[Dict[str, Any]] = []
    for seq, ev in enumerate(events):
        rows.append(
            {
                "seq": seq,
                "file": ev.location.path,
                "line": ev.location.line,
                "column": ev.location.column,
                "origin_kind": ev.origin.kind.value,
                "origin_name": ev.origin.name,
                "function": ev.function,
                "event_name": _json(ev.event_name.to_dict()),
                "user_id": _json(ev.user_id.to_dict()) if ev.user_id is not None else None,
                "properties": _json({k: v.to_dict() for k, v in ev.properties.items()}),
                "extras": _json({k: v.to_dict() for k, v in ev.extras.items()}),
                "unresolved_properties": ev.unresolved_properties,
                "unresolved_entries": list(ev.unresolved_entries),
            }
        )
    return pa.Table.from_pylist(rows, schema=_event_schema())


def _diagnostics_table(diagnostics: "tuple[Diagnostic, ...]") -> "pa.Table":
    rows = [d.to_dict() for d in diagnostics]
    return pa.Table.from_pylist(rows, schema=_diagnostic_schema())


# ================================== reading ===================================


def read_events(out_dir: Path) -> List[Dict[str, Any]]:
    """Read persisted events back in their `TrackingEvent.to_dict()` shape, in run order."""
    if _PA_IMPORT_ERROR is not None:
        raise RuntimeError(f"pyarrow is required: {_PA_IMPORT_ERROR}")
    rows = pq.read_table(Path(out_dir) / "events.parquet").to_pylist()
    out: List[Dict[str, Any]] = []
    for row in sorted(rows, key=lambda r: r["seq"]):
        event: Dict[str, Any] = {
            "location": {"file": row["file"], "line": row["line"], "column": row["column"]},
            "origin": {"kind": row["origin_kind"], "name": row["origin_name"]},
            "event_name": json.loads(row["event_name"]),
            "user_id": json.loads(row["user_id"]) if row["user_id"] is not None else None,
            "properties": json.loads(row["properties"]),
            "function": row["function"],
        }
        extras = json.loads(row["extras"])
        if extras:
            event["extras"] = extras
        if row["unresolved_properties"] is not None:
            event["unresolved_properties"] = row["unresolved_properties"]
        if row["unresolved_entries"]:
            event["unresolved_entries"] = list(row["unresolved_entries"])
        out.append(event)
    return out


def read_diagnostics(out_dir: Path) -> List[Dict[str, Any]]:
    if _PA_IMPORT_ERROR is not None:
        raise RuntimeError(f"pyarrow is required: {_PA_IMPORT_ERROR}")
    return pq.read_table(Path(out_dir) / "diagnostics.parquet").to_pylist()
