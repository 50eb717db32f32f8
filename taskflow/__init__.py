"""
taskflow - local, file-persisted task queue with retrying workers.
"""

__version__ = "0.1.0"
