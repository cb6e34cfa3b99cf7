"""
Pins the service to its in-memory backends before any test imports the app.
"""

import os

os.environ.setdefault("USE_IN_MEMORY_BACKENDS", "1")
os.environ.setdefault("PANORAMA_SIZE", "300")
os.environ.setdefault("RETRY_BASE_DELAY_SECONDS", "0")
os.environ.setdefault("RETRY_MAX_DELAY_SECONDS", "0")
