"""
XCS Diagnose - diagnostic bundle collector for Xcode Server

This package gathers what is needed to analyze a build service incident:
- Output of diagnostic commands, each bounded by a timeout
- Recently modified server and system logs
- Logs, samples and crash reports from the latest integrations of each bot
- Bot, integration, settings and version documents from the database
- A single tar.gz bundle with a checksummed manifest
"""

__version__ = "1.0.0"
__all__ = [
    "cli",
    "collector",
    "command",
    "config",
    "exceptions",
    "logging",
    "models",
    "storage",
    "store",
]
