"""
Worker implementations (execution backends for registered workers).

Components:
- base.py: CallableWorker, adapts a plain coroutine function
- shell.py: ShellWorker, runs a local command from the task payload
- llm.py: LLMWorker, OpenAI-compatible chat completion "agent"
- offline.py: EchoWorker, deterministic offline demo worker

A worker may include a "resource_usage" list in a dict result; the scheduler loop
records those samples on the task before the outcome is applied.
"""
