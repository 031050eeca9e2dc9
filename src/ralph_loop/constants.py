"""Constants for the agent loop runner."""

import os

# Marker an agent prints once every story in prd.json passes
COMPLETION_MARKER = "<promise>COMPLETE</promise>"

# Network failures reported by the agent CLIs. Matched case-sensitively;
# any hit means the iteration never really ran.
TRANSIENT_ERROR_SIGNATURES = (
    "ConnectError",
    "ETIMEDOUT",
    "ECONNRESET",
    "ENOTFOUND",
    "connection refused",
    "Connection refused",
)

DEFAULT_WORKER = "cursor"
DEFAULT_MAX_ITERATIONS = 10

# Retry budget for back-to-back connection errors
MAX_CONSECUTIVE_ERRORS = 3

RETRY_BASE_DELAY_S = float(os.getenv("RALPH_RETRY_BASE_DELAY_S", "10"))
ITERATION_DELAY_S = float(os.getenv("RALPH_ITERATION_DELAY_S", "2"))


# Project layout
PRD_FILENAME = "prd.json"
PROGRESS_FILENAME = "progress.txt"
ARCHIVE_DIRNAME = "archive"
LAST_BRANCH_FILENAME = ".last-branch"
PROMPT_FILENAME = "prompt.md"
CONFIG_FILENAMES = ("ralph.yaml", "ralph.yml", "ralph.json")

PROJECT_ROOT_SEARCH_DEPTH = 3
BRANCH_PREFIX = "ralph/"

# Used by branch/archive bookkeeping in the shell tooling around prd.json
JSON_QUERY_TOOL = "jq"
JSON_QUERY_TOOL_HINT = "Please install jq: brew install jq"
