"""CSV client / invoice / invoice-item import pipeline.

Stages: csvio.reader (parse) -> services.validator (validate & normalize)
-> services.reconciler (resolve cross-file references) -> db.entity_store
(commit). services.orchestrator wires them together for one import batch.
"""

__version__ = "0.1.0"
