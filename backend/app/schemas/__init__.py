from .dispute import (
    DisputeCreate,
    DisputeActionIn,
    DisputeMessageResponse,
    DisputeSummary,
    DisputeResponse,
)

__all__ = [
    "DisputeCreate",
    "DisputeActionIn",
    "DisputeMessageResponse",
    "DisputeSummary",
    "DisputeResponse",
]
