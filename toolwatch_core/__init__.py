"""ToolWatch Core - tooling coverage analytics for daily host snapshots"""

__version__ = "1.0.0"
