"""Whisper server client implementation."""

import json
import logging
import os
from typing import Any

import aiofiles
import aiohttp

from callbrain.server.services import WhisperServerHandler

logger = logging.getLogger(__name__)


class WhisperServerError(Exception):
    """Non-200 response from the whisper server."""

    def __init__(self, status: int, body: str):
        super().__init__(f"Inference failed ({status}): {body}")
        self.status = status
        self.body = body


class WhisperServerClient(WhisperServerHandler):
    """Client for a whisper.cpp HTTP server."""

    def __init__(
        self,
        name: str = "whisper_server",
        endpoint: str = "http://localhost:50021",
        timeout_seconds: float = 600.0,
    ):
        """
        Initialize Whisper server client.

        Args:
            name: Name of the client
            endpoint: Whisper server endpoint URL
            timeout_seconds: Total timeout for one inference request
        """
        super().__init__(name, endpoint)
        self.timeout_seconds = timeout_seconds
        self.session: aiohttp.ClientSession | None = None

    # -------------------------------------------------------------- #
    # Server Management
    # -------------------------------------------------------------- #

    async def connect(self) -> None:
        """Open the HTTP session. An unhealthy server is logged, not fatal."""
        self.session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.timeout_seconds)
        )
        if not await self.health_check():
            logger.warning(f"[{self.name}] Whisper server at {self.endpoint} is not healthy yet")
        self._connected = True
        logger.info(f"[{self.name}] Connected to Whisper server at {self.endpoint}")

    async def disconnect(self) -> None:
        """Close connection to Whisper server."""
        if self.session:
            await self.session.close()
            self.session = None
        self._connected = False
        logger.info(f"[{self.name}] Disconnected from Whisper server")

    async def health_check(self) -> bool:
        """Check if Whisper server is healthy."""
        try:
            if not self.session:
                return False
            async with self.session.get(f"{self.endpoint}/health") as response:
                return response.status == 200
        except aiohttp.ClientError as e:
            logger.error(f"[{self.name}] Health check failed: {e}")
            return False

    # -------------------------------------------------------------- #
    # Handler Methods
    # -------------------------------------------------------------- #

    async def inference(
        self,
        audio_path: str,
        word_timestamps: bool = False,
        response_format: str = "verbose_json",
        temperature: str = "0.0",
        temperature_inc: str = "0.2",
        language: str = "en",
    ) -> dict[str, Any]:
        """
        Perform transcription on the given audio file.

        Args:
            audio_path: Path to the audio file
            word_timestamps: Whether to include word-level timestamps
            response_format: "verbose_json" or "json"
            temperature: Sampling temperature for the model
            temperature_inc: Temperature increment for fallback
            language: Language code (e.g., "en" for English)

        Returns:
            Parsed JSON response with ``text`` and, for verbose_json, ``segments``

        Raises:
            FileNotFoundError: If the audio file does not exist
            WhisperServerError: If the server answers with a non-200 status
            aiohttp.ClientError: On connection failures
        """
        if not self.session:
            raise RuntimeError("Not connected to Whisper server")

        if not os.path.isfile(audio_path):
            raise FileNotFoundError(f"Audio file not found: {audio_path}")

        async with aiofiles.open(audio_path, "rb") as f:
            audio_bytes = await f.read()

        data = aiohttp.FormData()
        data.add_field("file", audio_bytes, filename=os.path.basename(audio_path))
        for key, value in {
            "word_timestamps": str(word_timestamps).lower(),
            "response_format": response_format,
            "temperature": temperature,
            "temperature_inc": temperature_inc,
            "language": language,
        }.items():
            data.add_field(key, value)

        async with self.session.post(f"{self.endpoint}/inference", data=data) as response:
            body = await response.text()
            if response.status != 200:
                logger.error(f"[{self.name}] Inference failed ({response.status})")
                raise WhisperServerError(response.status, body)

        return json.loads(body)


def construct_whisper_server_client(
    endpoint: str = "http://localhost:50021",
) -> WhisperServerClient:
    """
    Construct and return a Whisper server client.

    Args:
        endpoint: Whisper server endpoint URL

    Returns:
        Configured WhisperServerClient instance
    """
    return WhisperServerClient(name="whisper_server", endpoint=endpoint)
