"""
Remote session wire protocol.

Requests and replies are JSON objects exchanged over a strict
request/response socket.

Request:
    {"cmd": "EXECUTE", "config": {...}, "tx_shm_name": "..."}
    {"cmd": "RELEASE"}

Reply:
    {"status": "SUCCESS", "rx_shm_name": "...", "rx_nsamps_per_ch": N,
     "num_rx_ch": C}
    {"status": "FAILED" | "ERROR" | "UNKNOWN", "msg": "..."}
    {"status": "RELEASED"}
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from ..core.config import SessionConfig
from ..core.result import ConfigValidationError, ProtocolError


class UnknownCommandError(ProtocolError):
    """Raised for a request whose command tag is not supported."""


class Command(Enum):
    """Request command tags."""

    EXECUTE = "EXECUTE"
    RELEASE = "RELEASE"


class ReplyStatus(Enum):
    """Reply status values."""

    SUCCESS = "SUCCESS"
    FAILED = "FAILED"  # Session ran but validation, sync or streaming failed
    ERROR = "ERROR"  # Malformed request or unexpected exception
    RELEASED = "RELEASED"
    UNKNOWN = "UNKNOWN"  # Unsupported command tag


@dataclass
class Request:
    """Parsed request."""

    command: Command
    config: Optional[SessionConfig] = None
    tx_shm_name: str = ""

    @classmethod
    def from_dict(cls, data: Any) -> "Request":
        """
        Parse a decoded request object.

        Raises:
            ProtocolError: Missing or malformed field
            UnknownCommandError: Unsupported command tag
        """
        if not isinstance(data, dict):
            raise ProtocolError(f"Request must be a JSON object, got {type(data).__name__}")

        tag = data.get("cmd", "")
        try:
            command = Command(tag)
        except ValueError:
            raise UnknownCommandError(f"Unknown command: {tag!r}") from None

        if command == Command.RELEASE:
            return cls(command=command)

        for key in ("config", "tx_shm_name"):
            if key not in data:
                raise ProtocolError(f"EXECUTE request missing field: {key}")
        name = data["tx_shm_name"]
        if not isinstance(name, str) or not name:
            raise ProtocolError("tx_shm_name must be a non-empty string")

        try:
            config = SessionConfig.from_dict(data["config"], strict=True)
        except KeyError as e:
            raise ProtocolError(e.args[0] if e.args else str(e)) from e
        except ConfigValidationError as e:
            raise ProtocolError(f"Invalid config: {e}") from e
        return cls(command=command, config=config, tx_shm_name=name)

    @classmethod
    def from_json(cls, text: str) -> "Request":
        try:
            data = json.loads(text)
        except ValueError as e:
            raise ProtocolError(f"Malformed JSON request: {e}") from e
        return cls.from_dict(data)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"cmd": self.command.value}
        if self.command == Command.EXECUTE:
            data["config"] = {
                k: v for k, v in self.config.to_dict().items() if k not in ("tx_files", "rx_files")
            }
            data["tx_shm_name"] = self.tx_shm_name
        return data


@dataclass
class Reply:
    """Reply to one request. Fields left as None are omitted on the wire."""

    status: ReplyStatus
    msg: Optional[str] = None
    rx_shm_name: Optional[str] = None
    rx_nsamps_per_ch: Optional[int] = None
    num_rx_ch: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.status in (ReplyStatus.SUCCESS, ReplyStatus.RELEASED)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"status": self.status.value}
        for key in ("msg", "rx_shm_name", "rx_nsamps_per_ch", "num_rx_ch"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Reply":
        try:
            status = ReplyStatus(data.get("status"))
        except ValueError as e:
            raise ProtocolError(f"Unknown reply status: {data.get('status')!r}") from e
        return cls(
            status=status,
            msg=data.get("msg"),
            rx_shm_name=data.get("rx_shm_name"),
            rx_nsamps_per_ch=data.get("rx_nsamps_per_ch"),
            num_rx_ch=data.get("num_rx_ch"),
        )

    @classmethod
    def error(cls, message: str) -> "Reply":
        return cls(status=ReplyStatus.ERROR, msg=message or "Unknown error")

    @classmethod
    def failed(cls, message: str) -> "Reply":
        return cls(status=ReplyStatus.FAILED, msg=message or "Session failed")
