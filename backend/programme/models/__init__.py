from programme.models.baseline import Baseline, BaselineTaskSnapshot

__all__ = ["Baseline", "BaselineTaskSnapshot"]
