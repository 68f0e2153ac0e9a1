"""Async client for the ComfyUI HTTP and WebSocket API."""
import logging

from .client import ComfyUIClient
from .config import ClientOptions, get_server_address
from .connection import ComfyConnection, ConnectionStatus
from .errors import (
    ComfyClientError,
    JobError,
    NetworkError,
    NotConnectedError,
    ProtocolError,
    ResponseError,
)
from .models import (
    EditHistoryRequest,
    HistoryEntry,
    ImageContainer,
    ImageRef,
    ImagesResponse,
    NodeInfo,
    NodeOutput,
    Prompt,
    PromptQueueState,
    QueuePromptResult,
    QueueState,
    SystemStats,
    UploadImageResult,
)
from .subscription import EventRecorder, Subscription, is_any_execution_done, is_execution_done

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    # Client
    "ComfyUIClient",
    "ClientOptions",
    "get_server_address",
    "ComfyConnection",
    "ConnectionStatus",
    "Subscription",
    "EventRecorder",
    "is_execution_done",
    "is_any_execution_done",
    # Errors
    "ComfyClientError",
    "JobError",
    "NetworkError",
    "NotConnectedError",
    "ProtocolError",
    "ResponseError",
    # Records
    "EditHistoryRequest",
    "HistoryEntry",
    "ImageContainer",
    "ImageRef",
    "ImagesResponse",
    "NodeInfo",
    "NodeOutput",
    "Prompt",
    "PromptQueueState",
    "QueuePromptResult",
    "QueueState",
    "SystemStats",
    "UploadImageResult",
]
