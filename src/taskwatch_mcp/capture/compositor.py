"""FFmpeg argument builders for joining segments and composing sources."""

from __future__ import annotations

import math
from pathlib import Path
from typing import Sequence

CANVAS_WIDTH = 1920
CANVAS_HEIGHT = 1080

ENCODE_ARGS = ("-c:v", "libx264", "-preset", "medium", "-crf", "23", "-pix_fmt", "yuv420p")


def calculate_grid_dimensions(count: int) -> tuple[int, int]:
    """Return ``(rows, cols)`` for laying out ``count`` sources on one canvas."""

    if count < 1:
        raise ValueError("At least one source is required")
    if count == 1:
        return (1, 1)
    if count == 2:
        return (1, 2)
    if count <= 4:
        return (2, 2)
    if count <= 6:
        return (2, 3)
    if count <= 9:
        return (3, 3)
    if count <= 12:
        return (3, 4)
    cols = math.ceil(math.sqrt(count))
    rows = math.ceil(count / cols)
    return (rows, cols)


def build_grid_filter(
    count: int,
    *,
    width: int = CANVAS_WIDTH,
    height: int = CANVAS_HEIGHT,
) -> str:
    """Build a ``-filter_complex`` graph that scales each input into a grid cell."""

    if count == 1:
        return f"[0:v]scale={width}:{height}[v]"

    rows, cols = calculate_grid_dimensions(count)
    cell_width = width // cols
    cell_height = height // rows

    parts = [
        f"[{idx}:v]scale={cell_width}:{cell_height}:force_original_aspect_ratio=decrease,"
        f"pad={cell_width}:{cell_height}:(ow-iw)/2:(oh-ih)/2,setsar=1[v{idx}]"
        for idx in range(count)
    ]

    layout = "|".join(
        f"{(idx % cols) * cell_width}_{(idx // cols) * cell_height}" for idx in range(count)
    )
    stack_inputs = "".join(f"[v{idx}]" for idx in range(count))
    parts.append(f"{stack_inputs}xstack=inputs={count}:layout={layout}[v]")
    return ";".join(parts)


def grid_command(inputs: Sequence[Path], output: Path) -> list[str]:
    """Arguments (without the executable) composing ``inputs`` into ``output``."""

    args: list[str] = ["-y"]
    for path in inputs:
        args.extend(["-i", str(path)])
    args.extend(["-filter_complex", build_grid_filter(len(inputs)), "-map", "[v]"])
    args.extend(ENCODE_ARGS)
    args.append(str(output))
    return args


def write_concat_list(segments: Sequence[Path], list_path: Path) -> Path:
    """Write a concat demuxer playlist for ``segments``."""

    lines = []
    for segment in segments:
        escaped = str(Path(segment).resolve()).replace("'", "'\\''")
        lines.append(f"file '{escaped}'")
    list_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return list_path


def concat_command(list_path: Path, output: Path) -> list[str]:
    return ["-y", "-f", "concat", "-safe", "0", "-i", str(list_path), "-c", "copy", str(output)]


__all__ = [
    "calculate_grid_dimensions",
    "build_grid_filter",
    "grid_command",
    "write_concat_list",
    "concat_command",
]
