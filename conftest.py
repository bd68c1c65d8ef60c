"""
Root pytest configuration.
Switches the settings to the in-memory SQLite database before the app module is imported.
"""
import os

# Set testing environment before importing app
os.environ["TESTING"] = "True"
os.environ["DEBUG"] = "False"
os.environ.setdefault("ORDER_RETRY_BACKOFF", "0")
