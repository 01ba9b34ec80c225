"""
Configuration
=============
Loads environment variables from .env file using python-dotenv.

Environment Variables:
    SOURCE_BRANCH            — Branch whose pushes trigger a run (default: new)
    TARGET_BRANCH            — Branch that receives validated commits (default: main)
    REMOTE_NAME              — Git remote used for fetch/push (default: origin)
    REPO_PATH                — Local working clone used for validation and merges
    PIPELINE_CONFIG          — YAML file with branches + validation steps (default: pipeline.yml)
    STEP_RUNNER              — "subprocess" or "docker" (default: subprocess)
    DOCKER_IMAGE             — Sandbox image for the docker runner (default: node:20-slim)
    NOTIFY_WEBHOOK_URL       — Chat webhook for failure reports (unset = log only)
    NOTIFY_CHANNEL           — Channel name passed to the notifier (default: #ci-feedback)
    WEBHOOK_SECRET           — Shared secret for X-Hub-Signature-256 checks (unset = no check)
    RESULTS_DIR              — Where run summaries are persisted (default: results)
    LOG_LEVEL / LOG_DIR      — Service log verbosity and directory (default: INFO, logs)

Timeout Philosophy:
    STEP_TIMEOUT_SECONDS bounds a single validation step. PUSH_TIMEOUT_SECONDS
    bounds each network-facing git command (fetch / push). A timeout is treated
    exactly like a non-zero exit code or a rejected push.

Retry Limit:
    PROMOTION_RETRY_LIMIT controls how many extra fetch → merge → push cycles
    are attempted after a rejected push. Validation steps are never retried.
"""
import os
from dotenv import load_dotenv

load_dotenv()

SOURCE_BRANCH = os.getenv("SOURCE_BRANCH", "new")
TARGET_BRANCH = os.getenv("TARGET_BRANCH", "main")
REMOTE_NAME = os.getenv("REMOTE_NAME", "origin")
REPO_PATH = os.getenv("REPO_PATH", os.path.abspath("workspace"))
PIPELINE_CONFIG = os.getenv("PIPELINE_CONFIG", "pipeline.yml")

# Step execution
STEP_RUNNER = os.getenv("STEP_RUNNER", "subprocess")
DOCKER_IMAGE = os.getenv("DOCKER_IMAGE", "node:20-slim")
STEP_TIMEOUT_SECONDS = int(os.getenv("STEP_TIMEOUT_SECONDS", 900))

# Output excerpts kept per step
OUTPUT_EXCERPT_LINES = int(os.getenv("OUTPUT_EXCERPT_LINES", 40))
OUTPUT_EXCERPT_MAX_CHARS = int(os.getenv("OUTPUT_EXCERPT_MAX_CHARS", 4000))

# Promotion
PUSH_TIMEOUT_SECONDS = int(os.getenv("PUSH_TIMEOUT_SECONDS", 120))
PROMOTION_RETRY_LIMIT = int(os.getenv("PROMOTION_RETRY_LIMIT", 1))

# Notification
NOTIFY_WEBHOOK_URL = os.getenv("NOTIFY_WEBHOOK_URL", "")
NOTIFY_CHANNEL = os.getenv("NOTIFY_CHANNEL", "#ci-feedback")

# Trigger + API
WEBHOOK_SECRET = os.getenv("WEBHOOK_SECRET", "")
DEDUP_WINDOW = int(os.getenv("DEDUP_WINDOW", 100))

# Run summaries
RESULTS_DIR = os.getenv("RESULTS_DIR", "results")
RUN_STORE_LIMIT = int(os.getenv("RUN_STORE_LIMIT", 200))

# Working clone bootstrap, only needed when REPO_PATH is not a clone yet
REPO_URL = os.getenv("REPO_URL", "")
GITHUB_TOKEN = os.getenv("GITHUB_TOKEN", "")

# Identity used for merge commits
GIT_AUTHOR_NAME = os.getenv("GIT_AUTHOR_NAME", "mergegate")
GIT_AUTHOR_EMAIL = os.getenv("GIT_AUTHOR_EMAIL", "mergegate@localhost")

# Notification delivery
NOTIFY_TIMEOUT_SECONDS = float(os.getenv("NOTIFY_TIMEOUT_SECONDS", 10))
NOTIFY_MAX_ATTEMPTS = int(os.getenv("NOTIFY_MAX_ATTEMPTS", 3))

# Pause between promotion attempts
PROMOTION_RETRY_DELAY_SECONDS = float(os.getenv("PROMOTION_RETRY_DELAY_SECONDS", 2))

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_DIR = os.getenv("LOG_DIR", "logs")
