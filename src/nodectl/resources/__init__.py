"""Resource get/list/watch pipeline."""

from nodectl.resources.pipeline import ResourcePipeline, run

__all__ = ["ResourcePipeline", "run"]
