"""
Snapshot Writer

Publishes star schema tables as Parquet with all-or-nothing visibility.

Layout under the output path:
    _staging/<run_id>/<table>/     private to an in-flight run
    _snapshots/<run_id>/<table>/   immutable published snapshots
    <table>                        symlink to the table's current snapshot
    _CURRENT.json                  manifest of the visible table set

A run stages every table, moves its staging directory into _snapshots and
then swaps each table link with os.replace. Readers following <table> see
either the previous snapshot or the new one, never a partial write. Readers
that need the whole set from one run resolve it through _CURRENT.json.
"""

import json
import os
import shutil
import uuid
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence, Union

import polars as pl
import pyarrow.dataset as ds
import pyarrow.parquet as pq
import structlog

from star_etl.config.settings import Settings, get_settings
from star_etl.exceptions import PublishFailure
from star_etl.schema.models import TARGET_SCHEMAS

logger = structlog.get_logger(__name__)

STAGING_DIR = "_staging"
SNAPSHOTS_DIR = "_snapshots"
MANIFEST_FILE = "_CURRENT.json"
LOCK_FILE = ".run.lock"


def new_run_id() -> str:
    """Sortable, unique run identifier"""
    return f"{datetime.utcnow().strftime('%Y%m%dT%H%M%S')}-{uuid.uuid4().hex[:8]}"


class PublishTransaction:
    """
    Staged output of one run, published by commit() or thrown away by discard().

    Leaving the ``with`` block without committing discards the staged tables.
    """

    def __init__(self, writer: "SnapshotWriter", run_id: str):
        self.writer = writer
        self.run_id = run_id
        self.staging_path = writer.staging_root / run_id
        self.staged: Dict[str, Path] = {}
        self.row_counts: Dict[str, int] = {}
        self.committed = False
        self.discarded = False

    def stage(self, table_name: str, df: pl.DataFrame) -> Path:
        """Write a table into this run's staging area."""
        if self.committed or self.discarded:
            raise PublishFailure(table_name, f"transaction {self.run_id} is closed")
        target = self.staging_path / table_name
        if target.exists():
            shutil.rmtree(target)
        try:
            self.writer.write_table(table_name, df, target)
        except (OSError, ValueError) as e:
            raise PublishFailure(table_name, f"staging write failed: {e}") from e
        self.staged[table_name] = target
        self.row_counts[table_name] = df.height
        logger.info("Table staged", table=table_name, rows=df.height, run_id=self.run_id)
        return target

    def commit(self) -> Dict[str, str]:
        """
        Make every staged table visible.

        Returns:
            Table name -> published location

        Raises:
            PublishFailure: Previously published tables stay visible
        """
        if self.committed:
            raise PublishFailure("*", f"transaction {self.run_id} already committed")
        if not self.staged:
            raise PublishFailure("*", "nothing staged")

        locations = self.writer.commit_snapshot(self.run_id, self.staging_path, self.row_counts)
        self.committed = True
        return locations

    def discard(self) -> None:
        if self.committed or self.discarded:
            return
        self.discarded = True
        shutil.rmtree(self.staging_path, ignore_errors=True)
        logger.info("Staged output discarded", run_id=self.run_id, tables=sorted(self.staged))

    def __enter__(self) -> "PublishTransaction":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if not self.committed:
            self.discard()


class SnapshotWriter:
    """
    Columnar sink for the star schema.

    Example:
        writer = SnapshotWriter(settings=settings)
        with writer.begin(run_id) as txn:
            for name, df in tables.items():
                txn.stage(name, df)
            locations = txn.commit()
    """

    def __init__(
        self,
        base_path: Optional[Union[str, Path]] = None,
        compression: Optional[str] = None,
        partitioning: Optional[Mapping[str, Sequence[str]]] = None,
        retain_snapshots: Optional[int] = None,
        settings: Optional[Settings] = None,
    ):
        settings = settings or get_settings()
        lake = settings.data_lake
        self.base_path = Path(base_path or lake.output_path)
        self.compression = compression or lake.compression
        self.retain_snapshots = max(1, retain_snapshots or lake.retain_snapshots)
        if partitioning is None:
            partitioning = {name: list(s.partition_by) for name, s in TARGET_SCHEMAS.items()}
            partitioning["fact_orders"] = list(lake.fact_partition_by)
        self.partitioning = {name: list(cols) for name, cols in partitioning.items()}

    @property
    def staging_root(self) -> Path:
        return self.base_path / STAGING_DIR

    @property
    def snapshots_root(self) -> Path:
        return self.base_path / SNAPSHOTS_DIR

    @property
    def manifest_path(self) -> Path:
        return self.base_path / MANIFEST_FILE

    @property
    def lock_path(self) -> Path:
        return self.base_path / LOCK_FILE

    # =========================================================================
    # WRITING
    # =========================================================================

    def write_table(self, table_name: str, df: pl.DataFrame, target: Path) -> None:
        """Serialize one table to Parquet under ``target``."""
        target.mkdir(parents=True, exist_ok=True)
        partition_cols = [c for c in self.partitioning.get(table_name, []) if c in df.columns]
        table = df.to_arrow(compat_level=pl.CompatLevel.oldest())

        if partition_cols and df.height > 0:
            pq.write_to_dataset(
                table,
                root_path=str(target),
                partition_cols=partition_cols,
                compression=self.compression,
                basename_template="part-{i}.parquet",
            )
        else:
            pq.write_table(table, str(target / "part-0.parquet"), compression=self.compression)

    def begin(self, run_id: Optional[str] = None) -> PublishTransaction:
        """Open a publish transaction for a run."""
        return PublishTransaction(self, run_id or new_run_id())

    def publish(self, table_name: str, df: pl.DataFrame, run_id: Optional[str] = None) -> str:
        """Stage and atomically publish a single table; returns its location."""
        with self.begin(run_id) as txn:
            txn.stage(table_name, df)
            return txn.commit()[table_name]

    def discard_stale_staging(self) -> None:
        """Remove staging left behind by interrupted runs. Call only while holding the run lock."""
        if not self.staging_root.exists():
            return
        for leftover in self.staging_root.iterdir():
            logger.warning("Removing stale staging output", path=str(leftover))
            shutil.rmtree(leftover, ignore_errors=True)

    # =========================================================================
    # PUBLISHING
    # =========================================================================

    def _link_path(self, table_name: str) -> Path:
        return self.base_path / table_name

    def _check_link_slots(self, table_names: Sequence[str]) -> None:
        for name in table_names:
            link = self._link_path(name)
            if link.exists() and not link.is_symlink():
                raise PublishFailure(name, f"{link} exists and is not a snapshot link")

    def _swap_link(self, table_name: str, snapshot_table: Union[str, Path]) -> None:
        link = self._link_path(table_name)
        tmp_link = self.base_path / f".{table_name}.{uuid.uuid4().hex[:8]}.tmp"
        target = snapshot_table if isinstance(snapshot_table, str) else os.path.relpath(snapshot_table, self.base_path)
        os.symlink(target, tmp_link)
        try:
            os.replace(tmp_link, link)
        except OSError:
            tmp_link.unlink(missing_ok=True)
            raise

    def commit_snapshot(
        self,
        run_id: str,
        staging_path: Path,
        row_counts: Mapping[str, int],
    ) -> Dict[str, str]:
        """Move a staged run into _snapshots and point every table link at it."""
        table_names = sorted(row_counts)
        self._check_link_slots(table_names)

        snapshot = self.snapshots_root / run_id
        if snapshot.exists():
            raise PublishFailure("*", f"snapshot {run_id} already exists")
        self.snapshots_root.mkdir(parents=True, exist_ok=True)
        try:
            os.replace(staging_path, snapshot)
        except OSError as e:
            raise PublishFailure("*", f"could not move staged output into place: {e}") from e

        previous = {name: os.readlink(self._link_path(name)) for name in table_names if self._link_path(name).is_symlink()}
        swapped: List[str] = []
        try:
            for name in table_names:
                self._swap_link(name, snapshot / name)
                swapped.append(name)
            manifest = self._write_manifest(run_id, snapshot, row_counts)
        except OSError as e:
            unrestored = self._restore_links(swapped, previous)
            if not unrestored:
                shutil.rmtree(snapshot, ignore_errors=True)
            reason = f"swap failed: {e}"
            if unrestored:
                reason += f"; could not restore {', '.join(unrestored)}"
            raise PublishFailure(",".join(table_names), reason) from e

        logger.info("Snapshot published", run_id=run_id, tables=table_names)
        self._prune_snapshots(manifest["history"])
        return {name: str(self._link_path(name)) for name in table_names}

    def _restore_links(self, swapped: Sequence[str], previous: Mapping[str, str]) -> List[str]:
        """Point swapped links back at their previous targets; returns the ones that failed."""
        unrestored = []
        for name in swapped:
            try:
                if name in previous:
                    self._swap_link(name, previous[name])
                else:
                    self._link_path(name).unlink(missing_ok=True)
            except OSError as e:
                logger.error("Could not restore table link", table=name, error=str(e))
                unrestored.append(name)
        return unrestored

    def _write_manifest(self, run_id: str, snapshot: Path, row_counts: Mapping[str, int]) -> dict:
        manifest = self.read_manifest() or {"tables": {}, "history": []}
        for name, rows in row_counts.items():
            manifest["tables"][name] = {
                "run_id": run_id,
                "snapshot": os.path.relpath(snapshot / name, self.base_path),
                "rows": rows,
            }
        manifest["run_id"] = run_id
        manifest["published_at"] = datetime.utcnow().isoformat()
        manifest["history"] = [r for r in manifest["history"] if r != run_id] + [run_id]

        tmp = self.base_path / f".{MANIFEST_FILE}.{uuid.uuid4().hex[:8]}.tmp"
        tmp.write_text(json.dumps(manifest, indent=2, sort_keys=True))
        os.replace(tmp, self.manifest_path)
        return manifest

    def _prune_snapshots(self, history: Sequence[str]) -> None:
        keep = set(history[-self.retain_snapshots:])
        # Never remove a snapshot a table still points to
        for link in self.base_path.iterdir():
            if link.is_symlink():
                parts = Path(os.readlink(link)).parts
                if len(parts) > 1 and parts[0] == SNAPSHOTS_DIR:
                    keep.add(parts[1])

        for snapshot in self.snapshots_root.iterdir():
            if snapshot.name not in keep:
                shutil.rmtree(snapshot, ignore_errors=True)
                logger.debug("Pruned snapshot", snapshot=snapshot.name)

    # =========================================================================
    # READING
    # =========================================================================

    def read_manifest(self) -> Optional[dict]:
        if not self.manifest_path.exists():
            return None
        return json.loads(self.manifest_path.read_text())

    def current_location(self, table_name: str) -> Optional[Path]:
        """Resolved snapshot directory currently visible for a table."""
        link = self._link_path(table_name)
        if not link.is_symlink():
            return None
        return link.resolve()

    def _read_location(self, table_name: str, location: Path) -> pl.DataFrame:
        dataset = ds.dataset(str(location), format="parquet", partitioning="hive")
        df = pl.from_arrow(dataset.to_table())
        schema = TARGET_SCHEMAS.get(table_name)
        return schema.conform(df) if schema else df

    def read_table(self, table_name: str) -> pl.DataFrame:
        """
        Read the currently visible version of a table.

        Table links are swapped one at a time, so reading several tables this way
        during a commit can mix two runs; use read_published() for a consistent set.
        """
        location = self.current_location(table_name)
        if location is None:
            raise FileNotFoundError(f"Table '{table_name}' has not been published under {self.base_path}")
        return self._read_location(table_name, location)

    def read_published(self, table_names: Optional[Sequence[str]] = None) -> Dict[str, pl.DataFrame]:
        """
        Read a table set as recorded by one manifest.

        The manifest is replaced only after every link of a run is in place, so the
        tables come from one publish even while a commit is swapping links.
        """
        manifest = self.read_manifest()
        if manifest is None:
            raise FileNotFoundError(f"Nothing has been published under {self.base_path}")
        entries = manifest["tables"]
        names = list(table_names) if table_names is not None else sorted(entries)
        missing = [name for name in names if name not in entries]
        if missing:
            raise FileNotFoundError(f"Tables not published under {self.base_path}: {', '.join(missing)}")
        return {
            name: self._read_location(name, self.base_path / entries[name]["snapshot"])
            for name in names
        }
