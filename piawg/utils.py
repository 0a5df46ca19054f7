#!/usr/bin/env python3

import subprocess
import shutil
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from .logger import log_message


def run_command(command, check=True, capture_output=False, text=True, timeout=None, env=None, cwd=None):
    """Runs a command without a shell and returns the CompletedProcess."""
    full_command = list(command) if isinstance(command, (list, tuple)) else command.split()

    cmd_str = ' '.join(full_command)
    log_message(5, f"Running command: {cmd_str}")

    try:
        result = subprocess.run(
            full_command,
            check=check,
            capture_output=capture_output,
            text=text,
            timeout=timeout,
            env=env,
            cwd=cwd
        )
        if capture_output:
            # Only log output if it's not too long to avoid verbose logging
            stdout_output = (result.stdout or '').strip()
            stderr_output = (result.stderr or '').strip()

            if len(stdout_output) > 200:  # If output is longer than 200 chars, just log summary
                log_message(5, f"Command output: [TRUNCATED - {len(stdout_output)} chars] {stdout_output[:100]}...")
            else:
                log_message(5, f"Command output: {stdout_output}")

            if stderr_output:
                log_message(5, f"Command error : {stderr_output[:200]}")
        return result
    except subprocess.CalledProcessError as e:
        log_message(5, f"Command failed: {cmd_str} ({e})")
        raise # Re-raise the exception if check=True
    except subprocess.TimeoutExpired:
        log_message(5, f"Command timed out: {cmd_str}")
        raise


def command_exists(name: str) -> bool:
    """Check whether an executable is available on PATH."""
    return shutil.which(name) is not None


def read_properties_file(path: Path) -> Dict[str, str]:
    """
    Read a KEY=VALUE properties file.

    Blank lines and lines starting with '#' are ignored, surrounding quotes
    are stripped from values. A missing file yields an empty dict.
    """
    properties: Dict[str, str] = {}
    path = Path(path)
    if not path.is_file():
        return properties

    with open(path, 'r') as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith('#') or '=' not in line:
                continue
            key, value = line.split('=', 1)
            value = value.strip()
            # Remove surrounding quotes if present
            if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
                value = value[1:-1]
            properties[key.strip()] = value

    log_message(5, f"Read {len(properties)} properties from {path}")
    return properties


def read_region_ids(path: Path) -> List[str]:
    """Read region ids from a file: whitespace separated, '#' comments allowed."""
    path = Path(path)
    if not path.is_file():
        return []

    region_ids: List[str] = []
    with open(path, 'r') as f:
        for line in f:
            line = line.split('#', 1)[0]
            for region_id in line.split():
                if region_id not in region_ids:
                    region_ids.append(region_id)
    return region_ids


def parse_index_list(text: str, count: Optional[int] = None) -> List[int]:
    """
    Parse a user supplied index selection such as "0", "1,3" or "0 2 5".

    "all" expands to every index when ``count`` is given.

    Raises:
        ValueError: If an entry is not a non-negative integer
    """
    text = text.strip()
    if count is not None and text.lower() == 'all':
        return list(range(count))

    indices = []
    for part in text.replace(',', ' ').split():
        if not part.isdigit():
            raise ValueError(f"Invalid selection: {part!r}")
        indices.append(int(part))
    if not indices:
        raise ValueError("Empty selection")
    return indices


def prompt_indices(prompt: str, count: int, input_func=None) -> List[int]:
    """Prompt for one or more indices into an enumerated list of ``count`` entries."""
    return parse_index_list((input_func or input)(prompt), count)


def format_enumerated(lines: Sequence[str]) -> List[str]:
    """Prefix each entry with its index, the way selection lists are displayed."""
    return [f"{i}) {line}" for i, line in enumerate(lines)]
