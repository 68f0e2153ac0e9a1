"""Request and response records for the ComfyUI HTTP API.

Each endpoint gets its own record. Unknown fields sent by newer servers are
kept on the model (``extra="allow"``) instead of being rejected.
"""
from dataclasses import dataclass
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

# A prompt is the node graph keyed by node id, e.g. {"3": {"class_type": "KSampler", "inputs": {...}}}
Prompt = dict[str, Any]


class _Record(BaseModel):
    model_config = ConfigDict(extra="allow")


class ImageRef(_Record):
    """Reference to an image stored on the server."""
    filename: str
    subfolder: str = ""
    type: str = "output"


class QueuePromptResult(_Record):
    prompt_id: str
    number: Optional[int] = None
    node_errors: dict[str, Any] = Field(default_factory=dict)


class UploadImageResult(_Record):
    name: str
    subfolder: str = ""
    type: str = "input"


class NodeOutput(_Record):
    images: Optional[list[ImageRef]] = None


class HistoryStatus(_Record):
    status_str: Optional[str] = None
    completed: Optional[bool] = None
    messages: list[Any] = Field(default_factory=list)


class HistoryEntry(_Record):
    prompt: list[Any] = Field(default_factory=list)
    outputs: dict[str, NodeOutput] = Field(default_factory=dict)
    status: Optional[HistoryStatus] = None


class EditHistoryRequest(_Record):
    """Body of POST /history: clear everything, or delete specific prompt ids."""
    clear: Optional[bool] = None
    delete: Optional[list[str]] = None


class DeviceStats(_Record):
    name: str
    type: str = ""
    index: Optional[int] = None
    vram_total: int = 0
    vram_free: int = 0
    torch_vram_total: int = 0
    torch_vram_free: int = 0


class SystemStats(_Record):
    system: dict[str, Any] = Field(default_factory=dict)
    devices: list[DeviceStats] = Field(default_factory=list)


class QueueState(_Record):
    queue_running: list[list[Any]] = Field(default_factory=list)
    queue_pending: list[list[Any]] = Field(default_factory=list)


class ExecInfo(_Record):
    queue_remaining: int = 0


class PromptQueueState(_Record):
    exec_info: ExecInfo = Field(default_factory=ExecInfo)


class NodeInfo(_Record):
    """Schema of one node class as reported by /object_info."""
    name: str
    display_name: str = ""
    description: str = ""
    category: str = ""
    input: dict[str, Any] = Field(default_factory=dict)
    output: list[Any] = Field(default_factory=list)
    output_is_list: list[bool] = Field(default_factory=list)
    output_name: list[str] = Field(default_factory=list)
    output_node: bool = False


@dataclass
class ImageContainer:
    """An output image: its server reference and the fetched bytes."""
    image: ImageRef
    blob: bytes


# Output node id -> images produced by that node
ImagesResponse = dict[str, list[ImageContainer]]

NameList = TypeAdapter(list[str])
History = TypeAdapter(dict[str, HistoryEntry])
ObjectInfo = TypeAdapter(dict[str, NodeInfo])
Metadata = TypeAdapter(dict[str, Any])
