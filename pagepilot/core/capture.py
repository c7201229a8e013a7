from __future__ import annotations

import hashlib
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Protocol

from pagepilot.core.config import EngineConfig
from pagepilot.core.errors import CaptureError
from pagepilot.core.page import Page
from pagepilot.core.protocol import Command, ProtocolError

logger = logging.getLogger("pagepilot.capture")

CONTENT_TYPES = {"png": "image/png", "jpeg": "image/jpeg"}


@dataclass(frozen=True)
class CaptureOptions:
    format: str = "png"
    quality: int | None = None
    full_page: bool = False

    def __post_init__(self) -> None:
        if self.format not in CONTENT_TYPES:
            raise ValueError(f"Unsupported capture format: {self.format}")
        if self.quality is not None:
            if self.format != "jpeg":
                raise ValueError("quality only applies to jpeg captures")
            if not 0 <= self.quality <= 100:
                raise ValueError("quality must be within [0, 100]")

    @property
    def content_type(self) -> str:
        return CONTENT_TYPES[self.format]

    def to_params(self) -> dict[str, object]:
        params: dict[str, object] = {"format": self.format, "full_page": self.full_page}
        if self.quality is not None:
            params["quality"] = self.quality
        return params


@dataclass(frozen=True)
class Artifact:
    data: bytes
    content_type: str
    captured_at: str = field(default_factory=lambda: datetime.now(tz=timezone.utc).isoformat())
    source_url: str = ""

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def sha256(self) -> str:
        return hashlib.sha256(self.data).hexdigest()


@dataclass(frozen=True)
class ArtifactRecord:
    artifact_id: str
    name: str
    path: str
    mime: str
    size: int
    sha256: str


class ArtifactSink(Protocol):
    def write(self, artifact: Artifact, name: str) -> ArtifactRecord: ...


class FileArtifactSink:
    def __init__(self, root_dir: str = "/tmp/pagepilot-artifacts") -> None:
        self._root = Path(root_dir)
        self._root.mkdir(parents=True, exist_ok=True)
        self._records: dict[str, ArtifactRecord] = {}

    @property
    def root(self) -> Path:
        return self._root

    def _safe_name(self, name: str) -> str:
        safe = re.sub(r"[^A-Za-z0-9._-]+", "_", name).strip("._")
        return safe or "artifact.bin"

    def write(self, artifact: Artifact, name: str) -> ArtifactRecord:
        target_path = self._root / self._safe_name(name)
        target_path.write_bytes(artifact.data)

        digest = artifact.sha256
        record = ArtifactRecord(
            artifact_id=f"cap_{digest[:20]}",
            name=target_path.name,
            path=str(target_path),
            mime=artifact.content_type,
            size=artifact.size,
            sha256=digest,
        )
        self._records[record.artifact_id] = record
        return record

    def get_record(self, artifact_id: str) -> Optional[ArtifactRecord]:
        return self._records.get(artifact_id)

    def list_records(self) -> list[ArtifactRecord]:
        return list(self._records.values())


class ArtifactCapture:
    def __init__(self, config: EngineConfig | None = None) -> None:
        self._config = config or EngineConfig()

    async def capture(
        self,
        page: Page,
        options: CaptureOptions | None = None,
        timeout_ms: int | None = None,
    ) -> Artifact:
        opts = options or CaptureOptions()
        capture_ms = self._config.timeouts.capture_timeout_ms if timeout_ms is None else timeout_ms
        async with page.exclusive("capture"):
            try:
                data = await page.call(Command.SCREENSHOT, opts.to_params(), timeout_ms=capture_ms)
            except ProtocolError as exc:
                if page.session.closed:
                    raise page.closed_error() from exc
                raise CaptureError(f"capture of {page.url or page.target_id} failed: {exc}") from exc
        if not data:
            raise CaptureError(f"capture of {page.url or page.target_id} returned no data")
        artifact = Artifact(data=bytes(data), content_type=opts.content_type, source_url=page.url)
        logger.debug("[Capture] %d bytes from %s", artifact.size, page.target_id)
        return artifact

    async def capture_to(
        self,
        page: Page,
        sink: ArtifactSink,
        name: str,
        options: CaptureOptions | None = None,
        timeout_ms: int | None = None,
    ) -> ArtifactRecord:
        artifact = await self.capture(page, options=options, timeout_ms=timeout_ms)
        try:
            record = sink.write(artifact, name)
        except OSError as exc:
            raise CaptureError(f"artifact sink rejected {name}: {exc}", code="ARTIFACT_SINK_FAILED") from exc
        logger.info("[Capture] Saved %s (%d bytes)", record.path, record.size)
        return record
