"""stepflow: a declarative workflow execution engine.

The engine runs an ordered list of task/handler steps against per-run data:
- data points gathered from the host and the knowledge store
- `${...}` token interpolation with fuzzy id normalization
- boolean step conditions
- repair of step-output references in generated workflows
"""

__version__ = "0.1.0"

from stepflow.engine.config import EngineSettings

__all__ = ["__version__", "EngineSettings"]
