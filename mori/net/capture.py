"""
Capture files — recorded inbound frames with markers.

A capture is the stream of variant buffers the transport delivered, saved so
it can be replayed against a session without a server:

    cap = FrameCapture("farm_run")
    cap.record(buf)
    cap.mark("entered world")
    cap.save("captures")

    cap = FrameCapture.load("captures/farm_run.json")
    for frame in cap.replay(speed=4.0):
        bot.handle(frame.payload)
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterator

from mori.errors import DecodeError
from mori.protocol import variant

log = logging.getLogger(__name__)


@dataclass
class Frame:
    """One inbound variant buffer."""
    timestamp: float
    payload: bytes

    @property
    def size(self) -> int:
        return len(self.payload)

    @property
    def function_name(self) -> str:
        """Event name, or '?' if the frame does not decode."""
        try:
            return variant.decode(self.payload).function_name
        except DecodeError:
            return "?"

    def to_dict(self) -> dict:
        return {"timestamp": self.timestamp, "payload_hex": self.payload.hex()}


@dataclass
class Marker:
    """A label placed between frames."""
    timestamp: float
    label: str
    frame_index: int  # index of next frame after this marker

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "label": self.label,
            "frame_index": self.frame_index,
        }


@dataclass
class FrameCapture:
    name: str = field(default_factory=lambda: time.strftime("%Y%m%d_%H%M%S"))
    frames: list[Frame] = field(default_factory=list)
    markers: list[Marker] = field(default_factory=list)
    start_time: float = 0.0

    def record(self, payload: bytes, ts: float | None = None) -> Frame:
        ts = ts if ts is not None else time.time()
        if not self.start_time:
            self.start_time = ts
        frame = Frame(timestamp=ts, payload=bytes(payload))
        self.frames.append(frame)
        return frame

    def mark(self, label: str) -> Marker:
        marker = Marker(timestamp=time.time(), label=label, frame_index=len(self.frames))
        self.markers.append(marker)
        log.info("mark #%d: %s (after frame #%d)", len(self.markers), label, marker.frame_index)
        return marker

    def frames_between_markers(self, marker_idx: int) -> list[Frame]:
        if marker_idx >= len(self.markers):
            return []
        start = self.markers[marker_idx].frame_index
        end = (
            self.markers[marker_idx + 1].frame_index
            if marker_idx + 1 < len(self.markers)
            else len(self.frames)
        )
        return self.frames[start:end]

    def replay(
        self,
        speed: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> Iterator[Frame]:
        """Yield frames, sleeping the recorded gaps / speed. speed <= 0 means no delay."""
        prev_ts: float | None = None
        for frame in self.frames:
            if speed > 0 and prev_ts is not None:
                gap = (frame.timestamp - prev_ts) / speed
                if gap > 0:
                    sleep(gap)
            prev_ts = frame.timestamp
            yield frame

    def save(self, directory: str | Path = "captures") -> Path:
        out_dir = Path(directory)
        out_dir.mkdir(parents=True, exist_ok=True)
        out_path = out_dir / f"{self.name}.json"
        data = {
            "name": self.name,
            "start_time": self.start_time,
            "frame_count": len(self.frames),
            "markers": [m.to_dict() for m in self.markers],
            "frames": [f.to_dict() for f in self.frames],
        }
        out_path.write_text(json.dumps(data, indent=2))
        log.info("capture saved: %s (%d frames, %d markers)",
                 out_path, len(self.frames), len(self.markers))
        return out_path

    @classmethod
    def load(cls, path: str | Path) -> FrameCapture:
        data = json.loads(Path(path).read_text())
        cap = cls(name=data.get("name", Path(path).stem), start_time=data.get("start_time", 0.0))
        for m in data.get("markers", []):
            cap.markers.append(Marker(**m))
        for f in data.get("frames", []):
            payload = bytes.fromhex(f["payload_hex"]) if f.get("payload_hex") else b""
            cap.frames.append(Frame(timestamp=f.get("timestamp", 0.0), payload=payload))
        return cap

    def summary(self) -> str:
        counts: dict[str, int] = {}
        for f in self.frames:
            name = f.function_name
            counts[name] = counts.get(name, 0) + 1
        lines = [
            f"Capture: {self.name}",
            f"  Frames: {len(self.frames)}",
            f"  Markers: {len(self.markers)}",
        ]
        for name, n in sorted(counts.items(), key=lambda kv: -kv[1]):
            lines.append(f"    {name:<40s} {n}")
        return "\n".join(lines)
