"""ComfyUI session client.

Wraps the HTTP endpoints of a ComfyUI server and the WebSocket used to learn
when a queued prompt has finished, so that its output images can be fetched.
"""
import json
import logging
import uuid
from dataclasses import replace
from functools import partial
from pathlib import Path
from typing import Optional, Union

import aiohttp

from .config import ClientOptions, split_server_address
from .connection import ComfyConnection, ConnectionStatus
from .errors import JobError, NotConnectedError
from .models import (
    EditHistoryRequest,
    History,
    HistoryEntry,
    ImageContainer,
    ImageRef,
    ImagesResponse,
    Metadata,
    NameList,
    NodeInfo,
    ObjectInfo,
    Prompt,
    PromptQueueState,
    QueuePromptResult,
    QueueState,
    SystemStats,
    UploadImageResult,
)
from .request_manager import ComfyRequestManager
from .subscription import finished_prompt_id, is_any_execution_done, is_execution_done

package_logger = logging.getLogger("comfyui_client")


class ComfyUIClient:
    """Client for one ComfyUI server, identified by ``client_id``.

    HTTP methods return None (or False) when the server answers with an error,
    and raise NetworkError when the server cannot be reached.
    """

    def __init__(
        self,
        server_address: str,
        client_id: Optional[str] = None,
        options: Optional[ClientOptions] = None,
        logger: Optional[logging.Logger] = None,
    ):
        address, secure = split_server_address(server_address)
        options = options or ClientOptions()
        if options.secure is None:
            options = replace(options, secure=bool(secure))

        self._server_address = address
        self._client_id = client_id or str(uuid.uuid4())
        self._options = options
        self._logger = logger or package_logger
        self.requests = ComfyRequestManager(address, self._client_id, options, self._logger)
        self.connection = ComfyConnection(self.requests, self._logger)

    @property
    def server_address(self) -> str:
        return self._server_address

    @property
    def client_id(self) -> str:
        return self._client_id

    @property
    def options(self) -> ClientOptions:
        return self._options

    @property
    def status(self) -> ConnectionStatus:
        return self.connection.status

    async def __aenter__(self) -> "ComfyUIClient":
        return self

    async def __aexit__(self, *exc_info):
        await self.close()

    # Connection

    async def connect(self) -> bool:
        """Open the WebSocket, replacing any open one. True if it is now open."""
        return await self.connection.connect()

    async def disconnect(self):
        await self.connection.disconnect()

    async def close(self):
        """Disconnect and release the HTTP session."""
        await self.connection.disconnect()
        await self.requests.close()

    # Endpoints

    async def get_embeddings(self) -> Optional[list[str]]:
        return await self.requests.get_json("embeddings", NameList)

    async def get_extensions(self) -> Optional[list[str]]:
        return await self.requests.get_json("extensions", NameList)

    async def queue_prompt(self, prompt: Prompt) -> Optional[QueuePromptResult]:
        """Submit a prompt graph for execution."""
        return await self.requests.post_json(
            "prompt",
            {"prompt": prompt, "client_id": self._client_id},
            QueuePromptResult,
        )

    async def interrupt(self) -> bool:
        """Stop the prompt that is currently executing."""
        return await self.requests.post("interrupt")

    async def edit_history(self, request: EditHistoryRequest) -> bool:
        return await self.requests.post("history", request.model_dump(exclude_none=True))

    async def upload_image(
        self, image: bytes, filename: str, overwrite: Optional[bool] = None
    ) -> Optional[UploadImageResult]:
        form = self._image_form(image, filename, overwrite)
        return await self.requests.post_form("upload/image", form, UploadImageResult)

    async def upload_mask(
        self,
        image: bytes,
        filename: str,
        original_ref: ImageRef,
        overwrite: Optional[bool] = None,
    ) -> Optional[UploadImageResult]:
        """Upload a mask to be applied to the alpha channel of ``original_ref``."""
        form = self._image_form(image, filename, overwrite)
        form.add_field("original_ref", json.dumps(original_ref.model_dump()))
        return await self.requests.post_form("upload/mask", form, UploadImageResult)

    @staticmethod
    def _image_form(image: bytes, filename: str, overwrite: Optional[bool]) -> aiohttp.FormData:
        form = aiohttp.FormData()
        form.add_field("image", image, filename=filename, content_type="application/octet-stream")
        if overwrite is not None:
            form.add_field("overwrite", "true" if overwrite else "false")
        return form

    async def get_image(
        self, filename: str, subfolder: str = "", type: str = "output"
    ) -> Optional[bytes]:
        return await self.requests.get_bytes(
            "view", {"filename": filename, "subfolder": subfolder, "type": type}
        )

    async def view_metadata(
        self, folder_name: str, filename: Optional[str] = None
    ) -> Optional[dict]:
        """Read the safetensors metadata of a model file in ``folder_name``."""
        params = {"filename": filename} if filename else None
        return await self.requests.get_json(f"view_metadata/{folder_name}", Metadata, params)

    async def get_system_stats(self) -> Optional[SystemStats]:
        return await self.requests.get_json("system_stats", SystemStats)

    async def get_prompt(self) -> Optional[PromptQueueState]:
        return await self.requests.get_json("prompt", PromptQueueState)

    async def get_object_info(self, node_class: Optional[str] = None) -> Optional[dict[str, NodeInfo]]:
        endpoint = f"object_info/{node_class}" if node_class else "object_info"
        return await self.requests.get_json(endpoint, ObjectInfo)

    async def get_history(self, prompt_id: Optional[str] = None) -> Optional[dict[str, HistoryEntry]]:
        endpoint = f"history/{prompt_id}" if prompt_id else "history"
        return await self.requests.get_json(endpoint, History)

    async def get_queue(self) -> Optional[QueueState]:
        return await self.requests.get_json("queue", QueueState)

    # Results

    async def get_images(self, prompt: Prompt) -> ImagesResponse:
        """Queue ``prompt``, wait for it to finish and fetch its output images.

        Requires an open connection (see connect). Waits without a time limit;
        wrap the call in ``asyncio.wait_for`` to bound it.

        Returns:
            Output node id -> images of that node, in history order
        """
        if not self.connection.is_open:
            raise NotConnectedError(
                "WebSocket client is not connected. Please call connect() before interacting."
            )

        # Fast (cached) prompts can finish before the POST /prompt answer arrives
        with self.connection.record(is_any_execution_done) as early:
            queued = await self.queue_prompt(prompt)
            if queued is None:
                raise JobError("Failed to queue prompt")
            prompt_id = queued.prompt_id

            with self.connection.subscribe(partial(is_execution_done, prompt_id=prompt_id)) as done:
                self.connection.unsubscribe(early)
                if early.error is not None:
                    raise early.error
                if not any(finished_prompt_id(e) == prompt_id for e in early.events):
                    await done
        self._logger.info("Done executing prompt (ID: %s)", prompt_id)

        return await self._collect_images(prompt_id)

    async def _collect_images(self, prompt_id: str) -> ImagesResponse:
        history = await self.get_history(prompt_id)
        if history is None or prompt_id not in history:
            raise JobError(f"No history for prompt {prompt_id}", prompt_id)

        output_images: ImagesResponse = {}
        for node_id, node_output in history[prompt_id].outputs.items():
            if node_output.images is None:
                continue
            images = []
            for image in node_output.images:
                blob = await self.get_image(image.filename, image.subfolder, image.type)
                if blob is None:
                    raise JobError(f"Failed to fetch image {image.filename}", prompt_id)
                images.append(ImageContainer(image=image, blob=blob))
            output_images[node_id] = images
        return output_images

    def save_images(self, images: ImagesResponse, output_dir: Union[str, Path]) -> list[Path]:
        """Write every image to ``output_dir/<filename>``, replacing existing files."""
        output_dir = Path(output_dir)
        paths = []
        for containers in images.values():
            for container in containers:
                path = output_dir / container.image.filename
                path.write_bytes(container.blob)
                paths.append(path)
        self._logger.info("Saved %d images to %s", len(paths), output_dir)
        return paths
