"""
Multi-party flows: progress tracking, sessions and the member initiator/responder pairs.
"""

from .member import (
    CreateMemberFlow,
    EditMemberFlow,
    FlowLogic,
    MemberResponderFlow,
    ObserverResponderFlow,
)
from .progress import FlowStep, ProgressTracker
from .session import FlowSession, InProcessNetwork

__all__ = [
    "CreateMemberFlow",
    "EditMemberFlow",
    "FlowLogic",
    "FlowSession",
    "FlowStep",
    "InProcessNetwork",
    "MemberResponderFlow",
    "ObserverResponderFlow",
    "ProgressTracker",
]
