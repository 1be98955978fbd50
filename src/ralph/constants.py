"""Ralph constants — file names, markers, and defaults."""

from __future__ import annotations

import re

COMPLETION_MARKER = "<promise>COMPLETE</promise>"

DEFAULT_MAX_ITERATIONS = 10
ITERATION_PAUSE_SECONDS = 2.0

DEFAULT_AGENT_COMMAND = "claude --dangerously-skip-permissions"
DEFAULT_PROMPT_FILE = "prompt.md"
DEFAULT_BRANCH_PREFIX = "ralph/"
DEFAULT_TASK_STATUS = "pending"

CONFIG_FILE_NAME = "ralph.yaml"
STATE_DIR_NAME = ".ralph"
ROOT_ENV_VAR = "RALPH_HOME"

PROGRESS_HEADER = "# Ralph Progress Log"
PROGRESS_SEPARATOR = "---"

ARCHIVE_DATE_FORMAT = "%Y-%m-%d"
ARCHIVE_NAME_UNSAFE_PATTERN = re.compile(r"[\\/]+")

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130

BANNER_RULE = "═" * 55
