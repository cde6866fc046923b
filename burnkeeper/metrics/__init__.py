from burnkeeper.metrics.projector import MetricsProjector

__all__ = ["MetricsProjector"]
