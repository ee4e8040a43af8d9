"""Project Hub — local launcher for remotely hosted project archives.

Manages:
  - Catalog listing and archive download from the remote store
  - Extraction, dependency install and readiness per project
  - Preview dev server launch/stop
  - Prompt sync to the remote datastore
"""

__version__ = "0.1.0"
