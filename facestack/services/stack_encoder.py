"""
Stack Encoder - FFmpeg filter-graph executor for stacked compositions.

Crops and scales both inputs, stacks them vertically and merges their audio in
a single FFmpeg invocation, so no intermediate decoded files are written.
"""

import asyncio
import logging
import os
import shutil
import subprocess
from dataclasses import dataclass, field
from typing import Optional

from facestack.config import get_settings
from facestack.services.crop_planner import CropPlan
from facestack.services.errors import EncodeError

logger = logging.getLogger(__name__)


@dataclass
class CompositionJob:
    """Everything the encoder needs for one stacked output."""

    job_id: str
    inputs: tuple[str, str]
    plans: tuple[CropPlan, CropPlan]
    output_path: str
    # Indices of inputs that carry an audio stream
    audio_inputs: list[int] = field(default_factory=lambda: [0, 1])

    def __post_init__(self):
        if len(self.inputs) != 2 or len(self.plans) != 2:
            raise ValueError("A composition stacks exactly two inputs")
        top, bottom = self.plans
        if (top.target_width, top.target_height) != (bottom.target_width, bottom.target_height):
            raise ValueError(
                "Both inputs must scale to the same size: "
                f"{top.target_width}x{top.target_height} vs "
                f"{bottom.target_width}x{bottom.target_height}"
            )

    @property
    def output_width(self) -> int:
        return self.plans[0].target_width

    @property
    def output_height(self) -> int:
        return self.plans[0].target_height * 2


class StackEncoder:
    """
    Service for encoding stacked compositions using FFmpeg.

    Features:
    - Per-input crop + scale to a shared size
    - vstack of the two normalized streams (first input on top)
    - amerge of the two audio tracks
    - Fixed H.264/AAC profile with bit-exact flags for reproducible output
    """

    def __init__(self):
        self.settings = get_settings()
        self._ready = self._verify_ffmpeg()

    def _verify_ffmpeg(self) -> bool:
        """Verify ffmpeg is available."""
        if shutil.which("ffmpeg"):
            logger.info("FFmpeg available")
            return True
        logger.warning("ffmpeg not found in PATH - compositions will fail")
        return False

    def is_ready(self) -> bool:
        return self._ready

    def build_filter_graph(self, job: CompositionJob) -> str:
        """
        Build the filter_complex string for a job.

        Outputs are labelled [v] for video and, when both inputs have audio,
        [a] for the merged audio.
        """
        chains = []
        for index, plan in enumerate(job.plans):
            chains.append(f"[{index}:v]{plan.to_filter()},setsar=1[v{index}]")

        chains.append("[v0][v1]vstack=inputs=2[v]")

        if len(job.audio_inputs) == 2:
            chains.append("[0:a][1:a]amerge=inputs=2[a]")

        return ";".join(chains)

    def _audio_map(self, job: CompositionJob) -> Optional[str]:
        if len(job.audio_inputs) == 2:
            return "[a]"
        if len(job.audio_inputs) == 1:
            return f"{job.audio_inputs[0]}:a:0"
        return None

    def build_command(self, job: CompositionJob) -> list[str]:
        """Build the full FFmpeg command line for a job."""
        cmd = [
            "ffmpeg",
            "-y",
            "-nostdin",
            "-i", job.inputs[0],
            "-i", job.inputs[1],
            "-filter_complex", self.build_filter_graph(job),
            "-map", "[v]",
        ]

        audio_map = self._audio_map(job)
        if audio_map:
            cmd.extend([
                "-map", audio_map,
                "-c:a", "aac",
                "-b:a", self.settings.audio_bitrate,
                "-ac", str(self.settings.audio_channels),
            ])
        else:
            cmd.append("-an")

        cmd.extend([
            "-c:v", "libx264",
            "-crf", str(self.settings.ffmpeg_crf),
            "-preset", self.settings.ffmpeg_preset,
            "-pix_fmt", "yuv420p",
            "-map_metadata", "-1",
            "-fflags", "+bitexact",
            "-flags:v", "+bitexact",
            "-flags:a", "+bitexact",
            "-movflags", "+faststart",
            job.output_path,
        ])
        return cmd

    async def encode(self, job: CompositionJob) -> bytes:
        """
        Run the composition job and return the encoded bytes.

        The output file is removed once read; on failure nothing is kept.

        Raises:
            EncodeError: If FFmpeg fails or produces no output
        """
        if not self.is_ready():
            raise EncodeError("ffmpeg not found in PATH")

        os.makedirs(os.path.dirname(job.output_path) or ".", exist_ok=True)

        logger.info(
            f"[{job.job_id}] Encoding {job.output_width}x{job.output_height} stack "
            f"(audio inputs: {job.audio_inputs})"
        )

        try:
            await self._run_cmd(self.build_command(job))

            if not os.path.isfile(job.output_path) or os.path.getsize(job.output_path) == 0:
                raise EncodeError("FFmpeg produced no output")

            with open(job.output_path, "rb") as f:
                data = f.read()
        finally:
            if os.path.exists(job.output_path):
                os.remove(job.output_path)

        logger.info(f"[{job.job_id}] Encoded {len(data)} bytes")
        return data

    async def _run_cmd(self, cmd: list[str]) -> None:
        """Run a command asynchronously."""
        logger.debug(f"Running: {' '.join(cmd)}")

        loop = asyncio.get_event_loop()
        try:
            result = await loop.run_in_executor(
                None,
                lambda: subprocess.run(cmd, capture_output=True)
            )
        except OSError as e:
            raise EncodeError(f"Could not start FFmpeg: {e}")

        if result.returncode != 0:
            error_msg = result.stderr.decode(errors="replace")[-1000:] if result.stderr else "Unknown error"
            logger.error(f"FFmpeg failed: {error_msg}")
            raise EncodeError(f"FFmpeg failed: {error_msg}")
