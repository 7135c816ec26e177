"""filecatalog core package.

The filecatalog package is organized into focused modules with clear separation of concerns:

- **classifier**: Thread-safe cache around the file-name classifier (load, lazy bootstrap, retrain)
- **jobs**: Background job orchestration with state tracking and cooperative cancellation
- **progress**: Fire-and-forget progress channel for job updates
- **mover**: Batch file mover producing one outcome per requested item
- **processor**: Refresh, categorize, move and train job bodies
- **actions**: Request validation and job submission
- **persistence**: SQLite stores for file records and configuration values
- **training_log**: Append-only ``id;category;filename`` training log
- **run_summary**: Logging summaries for move batches and finished jobs

Most modules are internal implementation details and should be imported directly
when needed (e.g., ``from filecatalog.mover import BatchMover``).

The main entry point for embedding is ``build_runtime``.
"""

from .runtime import CatalogRuntime, build_runtime
from .version import __version__

__all__ = [
    "__version__",
    "CatalogRuntime",
    "build_runtime",
]
