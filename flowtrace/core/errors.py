"""Exception hierarchy shared by every flowtrace layer."""

from __future__ import annotations


class FlowTraceError(Exception):
    """Base class for all flowtrace errors."""


class DocumentError(FlowTraceError):
    """Raised by document adapters."""


class NodeDetachedError(DocumentError):
    """The node is no longer part of the document and cannot be measured."""

    def __init__(self, key: str) -> None:
        super().__init__(f"node {key!r} is detached")
        self.key = key


class InvalidExpressionError(DocumentError):
    """A CSS or XPath expression could not be parsed."""

    def __init__(self, expression: str, reason: str = "") -> None:
        message = f"invalid expression {expression!r}"
        if reason:
            message += f": {reason}"
        super().__init__(message)
        self.expression = expression


class RecorderError(FlowTraceError):
    """Raised by the recording layer."""


class NotRecordingError(RecorderError):
    """A capture command was issued while no recording is in progress."""


class CompilationError(FlowTraceError):
    """A trace could not be compiled into a workflow."""


class TraceFormatError(FlowTraceError, ValueError):
    """A saved trace does not have the expected JSON shape."""
