"""
Preprocessing stage: frames to model-ready tensors.
"""

from .buffer_pool import BufferLease, TensorPool
from .letterbox import LetterboxMapping, compute_letterbox, letterbox_image
from .preprocessor import PreparedTensor, Preprocessor

__all__ = [
    "BufferLease",
    "TensorPool",
    "LetterboxMapping",
    "compute_letterbox",
    "letterbox_image",
    "PreparedTensor",
    "Preprocessor",
]
