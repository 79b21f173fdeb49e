"""Entry point for UCX Sync.

Usage:
    python -m ucx_sync [run]        Run the sync engine in the foreground
    python -m ucx_sync projects     List projects available on the sources
    python -m ucx_sync status       Show the current configuration
    python -m ucx_sync service ...  Manage the Windows service
"""

import sys


def main() -> None:
    """Dispatch to the requested command."""
    from ucx_sync import service

    cmd = sys.argv[1] if len(sys.argv) > 1 else "run"
    commands = {
        "run": service.run_foreground,
        "projects": service.list_projects,
        "status": service.show_status,
    }
    if cmd in commands:
        sys.exit(commands[cmd]())
    if cmd in ("service", "--service"):
        sys.exit(service.service_main(sys.argv[2:]))
    service.show_help()
    sys.exit(0 if cmd in ("-h", "--help", "help") else 2)


if __name__ == "__main__":
    main()
