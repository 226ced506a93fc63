"""Git-like history, branching and merging for a document store.

docbranch keeps a schemaless document store (Chroma-style collections) in
agreement with a version-controlled relational store (Dolt).  The Dolt
repository holds the authoritative, commit-addressable history; the engine
detects local edits in the document store, stages and commits them, and
reconciles branches on merge.

Subpackages:

- ``codec``  -- escaping, typed-value extraction, terminal output cleanup,
  content hashing.
- ``core``   -- collaborator interfaces: Dolt CLI wrapper and document store.
- ``state``  -- repository bootstrap state detection and manifest discovery.
- ``sync``   -- change detection, deletion ledger, commit/merge orchestration.
"""

__version__ = "0.1.0"
