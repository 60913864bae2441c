import os
from dotenv import load_dotenv

load_dotenv()

# Store backend settings (STATUS_STORE_BACKEND, REDIS_URL, STATUS_KEY_PREFIX,
# QUERY_MAX_LIMIT, STORE_UPDATE_MAX_ATTEMPTS) are read by services.job_store.create_store_from_env.

DEFAULT_MAX_RETRIES = int(os.environ.get("DEFAULT_MAX_RETRIES", "3"))

METRICS_DEFAULT_WINDOW_HOURS = int(os.environ.get("METRICS_DEFAULT_WINDOW_HOURS", "24"))
BOTTLENECK_WINDOW_HOURS = int(os.environ.get("BOTTLENECK_WINDOW_HOURS", "24"))
BOTTLENECK_AVG_TIME_MS = float(os.environ.get("BOTTLENECK_AVG_TIME_MS", "30000"))
BOTTLENECK_QUEUE_SIZE = int(os.environ.get("BOTTLENECK_QUEUE_SIZE", "10"))

JOB_RETENTION_DAYS = int(os.environ.get("JOB_RETENTION_DAYS", "30"))
