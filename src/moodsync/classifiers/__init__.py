"""Classifier sub-package — per-modality model adapters and concurrent collection."""

from moodsync.classifiers.base import FunctionClassifier, ModalityClassifier
from moodsync.classifiers.http import HttpModalityClassifier
from moodsync.classifiers.runner import CollectionResult, collect_observations

__all__ = [
    "CollectionResult",
    "FunctionClassifier",
    "HttpModalityClassifier",
    "ModalityClassifier",
    "collect_observations",
]
