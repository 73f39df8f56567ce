from .dispatcher import (
    SeveritySummary,
    dispatch_finding,
    dispatch_findings,
    dispatch_summary,
)

__all__ = ["SeveritySummary", "dispatch_summary", "dispatch_finding", "dispatch_findings"]
