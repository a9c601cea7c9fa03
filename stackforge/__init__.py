"""Stackforge: dependency-ordered deployment of cloud stack sets.

v0.1.0:
  - StackGraph: deterministic topological plans, cycle and producer checks
  - ReferenceResolver: nested outputs, exports and versioned external parameters
  - DeploymentOrchestrator: create / update / delete with retry, rollback and
    live teardown-safety checks
  - ChangeSetPlanner: fingerprinted previews executed only on approval
  - Revision-addressed template store with a mutable "latest" alias
  - Hash-chained SQLite deployment ledger
  - In-memory, local and AWS (boto3) backends
"""

__version__ = "0.1.0"
__description__ = "Dependency-ordered deployment of cloud stack sets"

from stackforge.core.orchestrator import DeploymentOrchestrator
from stackforge.core.stack_graph import StackGraph
from stackforge.cli.app import app as cli

__all__ = ["DeploymentOrchestrator", "StackGraph", "cli", "__version__"]
