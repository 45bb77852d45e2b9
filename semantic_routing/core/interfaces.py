"""
Collaborator contracts and interface implementations for LLM backends and stores.
"""

import json
import threading
import uuid
from collections import OrderedDict
from typing import Any, Dict, Iterator, List, Optional, Protocol

import openai
import requests
from openai import OpenAI

from ..models import (
    ChunkType,
    DataProfile,
    ExecutionPlan,
    QueryIntent,
    SemanticExecutionResult,
    StreamChunk,
    UploadedFile,
    VisualizationConfig,
)
from ..models.config import LocalLLMConfig, OpenAIConfig
from ..utils import get_logger
from ..utils.error_handling import FallbackError, retry_with_backoff


# ---------------------------------------------------------------------------
# Collaborator contracts
# ---------------------------------------------------------------------------

class Profiler(Protocol):
    def profile(self, file: UploadedFile) -> DataProfile: ...


class SecurityAssessor(Protocol):
    def assess(self, profile: DataProfile) -> Dict[str, Any]: ...


class SemanticExecutor(Protocol):
    def execute(self, intent: QueryIntent, profile: DataProfile,
                plan: ExecutionPlan) -> SemanticExecutionResult: ...


class ChartRenderer(Protocol):
    def render(self, data: List[Dict[str, Any]], visualization: VisualizationConfig) -> Any: ...


class LLMStream(Protocol):
    def stream(self, session_id: str, query: str,
               file_id: Optional[str] = None) -> Iterator[StreamChunk]: ...


class FileStore(Protocol):
    def get_file(self, file_id: str) -> Optional[UploadedFile]: ...


class ProfileStore(Protocol):
    def save_profile(self, profile: DataProfile) -> None: ...

    def get_profile(self, profile_id: str) -> Optional[DataProfile]: ...


# ---------------------------------------------------------------------------
# In-memory stores
# ---------------------------------------------------------------------------

class InMemoryProfileStore:
    """Thread-safe dict-backed profile store."""

    def __init__(self):
        self._profiles: Dict[str, DataProfile] = {}
        self._lock = threading.Lock()

    def save_profile(self, profile: DataProfile) -> None:
        with self._lock:
            self._profiles[profile.id] = profile

    def get_profile(self, profile_id: str) -> Optional[DataProfile]:
        with self._lock:
            return self._profiles.get(profile_id)

    def delete_profile(self, profile_id: str) -> bool:
        with self._lock:
            return self._profiles.pop(profile_id, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._profiles.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._profiles)


class InMemoryFileStore:
    """Thread-safe dict-backed store for uploaded files."""

    def __init__(self):
        self._files: Dict[str, UploadedFile] = {}
        self._lock = threading.Lock()

    def save_file(self, file: UploadedFile, file_id: Optional[str] = None) -> str:
        file_id = file_id or f"file-{uuid.uuid4().hex[:12]}"
        with self._lock:
            self._files[file_id] = file
        return file_id

    def get_file(self, file_id: str) -> Optional[UploadedFile]:
        with self._lock:
            return self._files.get(file_id)

    def clear(self) -> None:
        with self._lock:
            self._files.clear()


# ---------------------------------------------------------------------------
# LLM conversation streams
# ---------------------------------------------------------------------------

class _SessionHistory:
    """Per-session chat message history, bounded per session and in session count."""

    def __init__(self, max_messages: int, max_sessions: int = 1000):
        self.max_messages = max_messages
        self.max_sessions = max_sessions
        self._messages: "OrderedDict[str, List[Dict[str, str]]]" = OrderedDict()
        self._lock = threading.Lock()

    def messages(self, session_id: str) -> List[Dict[str, str]]:
        with self._lock:
            return list(self._messages.get(session_id, []))

    def append(self, session_id: str, user_message: str, assistant_message: str) -> None:
        with self._lock:
            history = self._messages.setdefault(session_id, [])
            history.append({"role": "user", "content": user_message})
            history.append({"role": "assistant", "content": assistant_message})
            if len(history) > self.max_messages:
                self._messages[session_id] = history[-self.max_messages:]
            self._messages.move_to_end(session_id)
            while len(self._messages) > self.max_sessions:
                self._messages.popitem(last=False)

    def clear(self, session_id: Optional[str] = None) -> None:
        with self._lock:
            if session_id is None:
                self._messages.clear()
            else:
                self._messages.pop(session_id, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._messages)


def _data_preview(file_store: Optional[FileStore], file_id: Optional[str], max_lines: int = 20) -> Optional[str]:
    """First lines of an uploaded CSV, used to ground the model in the user's data."""
    if not file_store or not file_id:
        return None
    file = file_store.get_file(file_id)
    if file is None:
        return None
    text = file.content.decode("utf-8", errors="replace")
    return "\n".join(text.splitlines()[:max_lines])


def _build_messages(system_prompt: str, history: List[Dict[str, str]], query: str,
                    preview: Optional[str]) -> List[Dict[str, str]]:
    system = system_prompt
    if preview:
        system += f"\n\nThe first rows of the user's dataset:\n{preview}"
    return [{"role": "system", "content": system}] + history + [{"role": "user", "content": query}]


class OpenAIConversationStream:
    """
    Streams chat completions from the OpenAI API as StreamChunks.

    API failures are reported as a single ``error`` chunk instead of raised,
    so the consumer decides whether they are fatal.
    """

    backend = "openai"

    def __init__(self, config: Optional[OpenAIConfig] = None, file_store: Optional[FileStore] = None,
                 client: Optional[Any] = None):
        self.config = config or OpenAIConfig()
        self.logger = get_logger(__name__)
        self.file_store = file_store
        self._history = _SessionHistory(self.config.max_history_messages)

        if client is not None:
            self._client = client
        elif not self.config.api_key:
            self.logger.warning("OpenAI API key not provided")
            self._client = None
        else:
            self._client = OpenAI(
                api_key=self.config.api_key,
                timeout=self.config.timeout_seconds,
                max_retries=self.config.max_retries
            )

        self.logger.info(f"Initialized OpenAIConversationStream with model: {self.config.model}")

    def stream(self, session_id: str, query: str, file_id: Optional[str] = None) -> Iterator[StreamChunk]:
        """
        Stream an answer to a query within a session.

        Args:
            session_id: Conversation session the history belongs to
            query: User question or prompt
            file_id: Optional uploaded file to preview in the system prompt

        Yields:
            StreamChunk: ``content`` deltas, or one ``error`` chunk
        """
        if not self._client:
            yield StreamChunk(ChunkType.ERROR, {"message": "OpenAI API client not initialized"})
            return

        messages = _build_messages(
            self.config.system_prompt,
            self._history.messages(session_id),
            query,
            _data_preview(self.file_store, file_id)
        )

        parts: List[str] = []
        try:
            response = self._client.chat.completions.create(
                model=self.config.model,
                messages=messages,
                temperature=self.config.temperature,
                max_tokens=self.config.max_tokens,
                stream=True
            )
            for chunk in response:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta.content
                if delta:
                    parts.append(delta)
                    yield StreamChunk(ChunkType.CONTENT, {"delta": delta})

        except openai.RateLimitError as e:
            self.logger.warning(f"Rate limit hit while streaming: {str(e)}")
            yield StreamChunk(ChunkType.ERROR, {"message": "API rate limit exceeded", "detail": str(e)})
            return
        except openai.APIError as e:
            self.logger.error(f"OpenAI API error while streaming: {str(e)}")
            yield StreamChunk(ChunkType.ERROR, {"message": str(e)})
            return

        self._history.append(session_id, query, "".join(parts))

    def reset_session(self, session_id: Optional[str] = None) -> None:
        self._history.clear(session_id)

    @property
    def session_count(self) -> int:
        return len(self._history)


class LocalLLMConversationStream:
    """
    Streams chat responses from a local Ollama server over ``/api/chat``.
    """

    backend = "local"

    def __init__(self, config: Optional[LocalLLMConfig] = None, file_store: Optional[FileStore] = None,
                 system_prompt: Optional[str] = None):
        self.config = config or LocalLLMConfig()
        self.logger = get_logger(__name__)
        self.file_store = file_store
        self.system_prompt = system_prompt or OpenAIConfig().system_prompt
        self._history = _SessionHistory(self.config.max_history_messages)

        self.logger.info(f"Initialized LocalLLMConversationStream with model: {self.config.model_path}")

    def stream(self, session_id: str, query: str, file_id: Optional[str] = None) -> Iterator[StreamChunk]:
        payload = {
            "model": self.config.model_path,
            "messages": _build_messages(
                self.system_prompt,
                self._history.messages(session_id),
                query,
                _data_preview(self.file_store, file_id)
            ),
            "stream": True,
            "options": {"temperature": self.config.temperature}
        }

        parts: List[str] = []
        response = None
        try:
            response = self._open_stream(payload)
            if response.status_code != 200:
                self.logger.error(f"Ollama API error: {response.status_code} - {response.text}")
                yield StreamChunk(ChunkType.ERROR, {"message": f"Ollama returned {response.status_code}"})
                return

            # Newline-delimited JSON, one object per chunk
            for line in response.iter_lines():
                if not line:
                    continue
                event = json.loads(line)
                if event.get("error"):
                    yield StreamChunk(ChunkType.ERROR, {"message": event["error"]})
                    return
                delta = event.get("message", {}).get("content", "")
                if delta:
                    parts.append(delta)
                    yield StreamChunk(ChunkType.CONTENT, {"delta": delta})
                if event.get("done"):
                    break

        except requests.exceptions.Timeout:
            self.logger.error(f"Request timeout after {self.config.timeout_seconds} seconds")
            yield StreamChunk(ChunkType.ERROR, {"message": "Local LLM request timed out"})
            return
        except FallbackError as e:
            self.logger.error(f"Ollama server unreachable: {str(e)}")
            yield StreamChunk(ChunkType.ERROR, {"message": "Local LLM server unreachable"})
            return
        except (requests.exceptions.RequestException, ValueError) as e:
            self.logger.error(f"Local LLM request failed: {str(e)}")
            yield StreamChunk(ChunkType.ERROR, {"message": str(e)})
            return
        finally:
            # Also runs when the consumer stops iterating early
            if response is not None:
                response.close()

        self._history.append(session_id, query, "".join(parts))

    @retry_with_backoff(max_retries=2, base_delay=0.5, max_delay=5.0,
                        retry_on=(requests.exceptions.ConnectionError,))
    def _open_stream(self, payload: Dict[str, Any]) -> requests.Response:
        return requests.post(
            f"{self.config.base_url}/api/chat",
            json=payload,
            stream=True,
            timeout=self.config.timeout_seconds
        )

    def check_availability(self) -> bool:
        """Whether the Ollama server answers its model listing endpoint."""
        try:
            response = requests.get(f"{self.config.base_url}/api/tags", timeout=5)
        except requests.exceptions.RequestException as e:
            self.logger.warning(f"Ollama server not reachable: {str(e)}")
            return False
        return response.status_code == 200

    def reset_session(self, session_id: Optional[str] = None) -> None:
        self._history.clear(session_id)

    @property
    def session_count(self) -> int:
        return len(self._history)


def create_llm_stream(backend: str, openai_config: Optional[OpenAIConfig] = None,
                      local_config: Optional[LocalLLMConfig] = None,
                      file_store: Optional[FileStore] = None):
    """Build the configured LLM stream backend."""
    if backend == "local":
        system_prompt = openai_config.system_prompt if openai_config else None
        return LocalLLMConversationStream(local_config, file_store=file_store, system_prompt=system_prompt)
    return OpenAIConversationStream(openai_config, file_store=file_store)
