# gunicorn.conf.py
import os

bind = f"0.0.0.0:{os.getenv('PORT', '8000')}"

# IMPORTANT:
# Dialogues and first-contact counters live in memory, so every request
# must reach the same process. Keep ONE worker; scale with threads instead
# (per-sender ordering is handled inside the dispatcher).
workers = int(os.getenv("WEB_CONCURRENCY", "1"))

threads = int(os.getenv("GUNICORN_THREADS", "4"))

timeout = int(os.getenv("GUNICORN_TIMEOUT", "60"))
accesslog = "-"
errorlog = "-"
loglevel = os.getenv("LOGLEVEL", "info")
