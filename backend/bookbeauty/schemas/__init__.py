"""Request and response models for the BookBeauty API."""

from ._strict_base import StrictModel, StrictRequestModel

__all__ = ["StrictModel", "StrictRequestModel"]
