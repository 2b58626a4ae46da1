"""Dispatch targets invoked by the external scheduler."""

from eleva.dispatch.jobs import JOB_HANDLERS, DispatchContext, JobSummary
from eleva.dispatch.payloads import parse_payload

__all__ = ["JOB_HANDLERS", "DispatchContext", "JobSummary", "parse_payload"]
