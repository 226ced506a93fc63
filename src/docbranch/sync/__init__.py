"""Change detection, deletion ledger and commit/merge orchestration.

Modules:

- ``engine``      -- ``SyncOrchestrator``: commit, merge, checkout, pull, reset.
- ``detector``    -- ``ChangeDetector``: live store vs Dolt HEAD diff.
- ``ledger``      -- ``DeletionLedger``: branch-scoped tombstones.
- ``collections`` -- collection-level change events.
- ``state``       -- ``SyncStateStore`` and ``OperationLog``.
- ``database``    -- shared SQLite bookkeeping database.
- ``resolver``    -- collection conflict detection and merge strategies.
- ``locks``       -- per-repository and per-collection write locks.
- ``models``      -- pydantic data contracts.
- ``reporter``    -- human-readable and structured result output.

Import ``SyncOrchestrator`` from ``docbranch.sync.engine``; this package
does not import it eagerly because the document store interface depends
on ``docbranch.sync.models``.
"""
