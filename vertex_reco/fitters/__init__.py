from .fitter import VertexFitter, IterationSummary
from .billoir import BilloirTrack, BilloirVertex, FullBilloirVertexFitter

__all__ = ["VertexFitter", "IterationSummary", "BilloirTrack", "BilloirVertex", "FullBilloirVertexFitter"]
