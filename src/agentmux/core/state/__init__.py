"""Session liveness classification."""

from agentmux.core.state.detector import DetectorState, StateDetector
from agentmux.core.state.models import SessionState

__all__ = ["DetectorState", "SessionState", "StateDetector"]
