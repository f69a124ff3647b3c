"""
Clawstash - encrypted, incremental backups of OpenClaw orchestrated by Python.

Provision S3-compatible storage, drive restic, restore any point in time.
"""

from importlib.metadata import version as _version

__version__ = _version("clawstash")
