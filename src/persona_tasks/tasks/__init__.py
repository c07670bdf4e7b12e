"""
Task subsystem.

Components:
- task_models.py: data structures (ChatTask | ServiceTask, TaskStatus, Classification)
- task_store.py: SQLite-backed storage + query/update helpers
- classifier.py / classifier_prompt.py: chat vs. task classification (LLM with keyword fallback)
- worthiness.py: rule-based task-worthiness filter
- external_services.py: executes image/API/blockchain/MCP tasks
- task_processor.py: polling loop that runs pending tasks with retry/backoff
- notifier.py / task_monitor.py: timeout handling and one notification per task
- task_api.py: intake helpers used by channels
"""
