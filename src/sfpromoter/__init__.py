"""
sfpromoter - Salesforce DX multi-environment promotion pipeline
"""

__version__ = "0.1.0"

from .core import PromotionPipeline
from .errors import PipelineError

__all__ = ["PromotionPipeline", "PipelineError"]
