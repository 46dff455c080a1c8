# augur/__init__.py
# =============================================================================
# augur — 预测市场多信号共识引擎。 / Multi-signal consensus engine for prediction markets.
# =============================================================================

"""augur — 预测市场多信号共识引擎。 / Multi-signal consensus engine for prediction markets."""

from augur.api.analyze import analyze
from augur.api.batch import analyze_many

__version__ = "0.1.0"
__all__ = ["analyze", "analyze_many", "__version__"]
