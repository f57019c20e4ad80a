"""
Layered image editor core: layer stack, compositor, interaction and history.
"""

from .cli import main
from .compositor import Compositor
from .controller import AppMode, EditorController, EditorState
from .errors import DecodeError, EditorError, RenderSurfaceError, ServiceError
from .history import HistoryTimeline, Snapshot
from .interaction import InteractionEngine, ToolMode
from .layers import Layer, Transform
from .models import CanvasSize, CompositeImage

__all__ = [
    "main",
    "AppMode",
    "CanvasSize",
    "CompositeImage",
    "Compositor",
    "DecodeError",
    "EditorController",
    "EditorError",
    "EditorState",
    "HistoryTimeline",
    "InteractionEngine",
    "Layer",
    "RenderSurfaceError",
    "ServiceError",
    "Snapshot",
    "ToolMode",
    "Transform",
]
