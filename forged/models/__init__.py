"""API models for forged."""

from .requests import CompileRequest
from .requests import ValidateRequest
from .responses import CancelResponse
from .responses import CatalogResponse
from .responses import DependencyClosureResponse
from .responses import ModuleGroup
from .responses import PreviewResponse
from .responses import StatusResponse
from .responses import SubmitResponse
from .responses import ValidateResponse

__all__ = [
    "CompileRequest",
    "ValidateRequest",
    "CancelResponse",
    "CatalogResponse",
    "DependencyClosureResponse",
    "ModuleGroup",
    "PreviewResponse",
    "StatusResponse",
    "SubmitResponse",
    "ValidateResponse",
]
