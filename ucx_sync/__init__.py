"""UCX Sync: continuous multi-source project replication.

Pulls a named project's files from every UCX worker node/share into a
single local destination while the sources are producing data, stops
per-source work once a source goes idle, and reports when each capture
has arrived from every registered source.
"""

__version__ = "1.0.0"
__app_name__ = "UCX Sync"
