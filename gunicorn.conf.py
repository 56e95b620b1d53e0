import os

# Load settings once in the master; a bad config fails the deploy at boot
preload_app = True

workers = int(os.environ.get("WEB_CONCURRENCY", "2"))

# Threads per worker
threads = int(os.environ.get("GUNICORN_THREADS", "4"))

# Bind
bind = f"0.0.0.0:{os.environ.get('PORT', '8080')}"

# Logging
accesslog = "-"
errorlog = "-"
loglevel = "info"

# Timeout (multipart legacy submissions upload through this process)
timeout = 120
