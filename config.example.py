# config.example.py

"""
Documentation-only module (safe to commit).

The real configuration is loaded from environment variables (optionally via a local .env file).
Do NOT commit real secrets. Use .env (local, gitignored).

This file exists to make the repo self-documenting even without opening .env.example.
"""

ENV_VARS = {
    # App / logging
    "AGENT_DISPATCH_APP_NAME": "App display name (default: agent-dispatch).",
    "AGENT_DISPATCH_LOG_LEVEL": "Console logging level (default: INFO).",
    # Paths (gitignored)
    "AGENT_DISPATCH_DATA_DIR": "Local data directory for logs and the archive (default: .local/agent_dispatch).",
    "AGENT_DISPATCH_ARCHIVE_DB_PATH": "Task archive SQLite path (default: <data_dir>/archive.sqlite3).",
    "AGENT_DISPATCH_PERSIST_ARCHIVE": "Persist finalized tasks to SQLite (true/false, default: true).",
    # Scheduler
    "AGENT_DISPATCH_TICK_INTERVAL_SECONDS": "Dispatch loop interval (default: 1.0).",
    "AGENT_DISPATCH_MAX_CONCURRENT_TASKS": "Global cap on running tasks (default: 50).",
    "AGENT_DISPATCH_MAX_TASKS_PER_WORKER": "Default per-worker load cap (default: 5).",
    "AGENT_DISPATCH_RETRY_ATTEMPTS": "Default max attempts per task (default: 3).",
    "AGENT_DISPATCH_RETRY_DELAY_SECONDS": "Base retry delay, multiplied by the failed attempt count (default: 1.0).",
    "AGENT_DISPATCH_TASK_TIMEOUT_SECONDS": "Per-attempt execution timeout (default: 300).",
    # Tracker / archive
    "AGENT_DISPATCH_ARCHIVE_RETENTION_DAYS": "Drop archived tasks older than this (default: 7).",
    "AGENT_DISPATCH_ARCHIVE_MAX_ENTRIES": "Max archived tasks kept in memory and on disk (default: 1000).",
    "AGENT_DISPATCH_CLEANUP_INTERVAL_SECONDS": "Retention sweep interval (default: 300).",
    # Reports
    "AGENT_DISPATCH_REPORT_LONG_TASK_SECONDS": "Tasks slower than this get a performance recommendation (default: 30).",
    "AGENT_DISPATCH_REPORT_RESOURCE_CALLS_LIMIT": "Resource kinds called more often get a data recommendation (default: 10).",
    "AGENT_DISPATCH_HEALTH_ERROR_RATE": "Error-rate threshold for the health penalty (default: 0.10).",
    "AGENT_DISPATCH_HEALTH_AVG_DURATION_SECONDS": "Average-duration threshold for the health penalty (default: 20).",
    "AGENT_DISPATCH_HEALTH_SUCCESS_RATE": "Success-rate threshold for the health penalty (default: 0.90).",
    "AGENT_DISPATCH_HEALTH_WINDOW": "Number of most recent finished tasks the health rates use (default: 20).",
    "AGENT_DISPATCH_RECENT_ACTIVITY_LIMIT": "Tasks listed under recent activity (default: 10).",
    # Built-in workers
    "AGENT_DISPATCH_SHELL_WORKERS": "Number of local shell workers (default: 2).",
    "AGENT_DISPATCH_SHELL_CAPABILITIES": "Comma/space separated capabilities of shell workers (default: shell).",
    "AGENT_DISPATCH_ECHO_WORKER": "Register the offline echo worker (true/false, default: true).",
    # LLM worker (OpenAI-compatible)
    "AGENT_DISPATCH_LLM_API_KEY": "API key; OPENAI_API_KEY is used as a fallback. Empty => no LLM worker.",
    "AGENT_DISPATCH_LLM_BASE_URL": "API base URL; OPENAI_BASE_URL is used as a fallback.",
    "AGENT_DISPATCH_LLM_MODELS": "Comma/space separated list of models to try in order (default: gpt-4o-mini).",
    "AGENT_DISPATCH_LLM_TIMEOUT_SECONDS": "HTTP timeout per request (default: 60).",
    "AGENT_DISPATCH_LLM_MAX_LOAD": "Concurrent tasks on the LLM worker (default: 2).",
}
