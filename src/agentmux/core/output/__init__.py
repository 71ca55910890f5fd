"""Output pipeline: sanitisation and bounded buffering."""

from agentmux.core.output.buffer import OutputBuffer
from agentmux.core.output.sanitize import looks_problematic, sanitize, sanitize_if_needed, strip_ansi

__all__ = ["OutputBuffer", "looks_problematic", "sanitize", "sanitize_if_needed", "strip_ansi"]
