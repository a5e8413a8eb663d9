import trajconserve.tasks.conservation
import trajconserve.tasks.preprocess
import trajconserve.tasks.run_models

__all__ = [
    "conservation",
    "preprocess",
    "run_models",
]
