"""Report operation outcomes to the host automation system (GitHub Actions).

Outputs are appended to the file named by ``GITHUB_OUTPUT``; failures are
emitted as ``::error::`` workflow commands so they surface on the run
summary. Outside Actions both degrade to log lines.
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import Mapping, TextIO

logger = logging.getLogger(__name__)


def write_outputs(
    outputs: Mapping[str, str | None],
    *,
    path: str | os.PathLike[str] | None = None,
) -> bool:
    """Append ``key=value`` lines to the step output file.

    Keys with empty values are skipped. Returns False when no output file
    is configured.
    """
    target = path or os.environ.get('GITHUB_OUTPUT')
    values = {k: v for k, v in outputs.items() if v}
    if not target:
        if values:
            logger.info('Outputs (no GITHUB_OUTPUT set): %s', values)
        return False

    with Path(target).open('a', encoding='utf-8') as fh:
        for key, value in values.items():
            if '\n' in value:
                raise ValueError(f'output {key!r} must be a single line')
            fh.write(f'{key}={value}\n')
    return True


def report_failure(message: str, *, stream: TextIO | None = None) -> None:
    """Emit a workflow error annotation for a fatal failure."""
    stream = stream or sys.stdout
    escaped = message.replace('%', '%25').replace('\r', '%0D').replace('\n', '%0A')
    stream.write(f'::error::{escaped}\n')
    stream.flush()
