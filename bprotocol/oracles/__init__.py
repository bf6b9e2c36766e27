"""External price feeds."""
from .pyth import PythOracle

__all__ = ["PythOracle"]
