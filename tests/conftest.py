import os

# Tests never export spans
os.environ.setdefault("DISABLE_TELEMETRY", "true")
