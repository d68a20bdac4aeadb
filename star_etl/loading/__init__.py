"""
Star Schema Loading Module
"""
from .lock import RunLock
from .writer import PublishTransaction, SnapshotWriter, new_run_id

__all__ = ["PublishTransaction", "RunLock", "SnapshotWriter", "new_run_id"]
