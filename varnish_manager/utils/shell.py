"""Subprocess helpers."""

import logging
import subprocess
from typing import List, Optional, Tuple

logger = logging.getLogger(__name__)

COMMAND_NOT_FOUND = 127


def run_command(
    cmd: List[str], timeout: Optional[int] = 30, input_text: Optional[str] = None
) -> Tuple[int, str, str]:
    """Run a command without a shell and return exit code, stdout, stderr.

    A missing executable is reported as exit code 127 rather than raised, so
    callers can tell "tool not installed" apart from "tool failed".
    """
    logger.debug(f"+ {' '.join(cmd)}")
    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=timeout,
            input=input_text,
        )
        return result.returncode, result.stdout.strip(), result.stderr.strip()
    except FileNotFoundError:
        return COMMAND_NOT_FOUND, "", f"command not found: {cmd[0]}"
    except subprocess.TimeoutExpired:
        return -1, "", "Command timed out"
    except OSError as e:
        return -1, "", str(e)
