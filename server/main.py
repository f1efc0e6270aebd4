"""Server entrypoint.

Reads bind and admission settings from flags or `HOST`/`PORT`/... environment
variables; see `cut_optimizer_server.cli`.
"""

from __future__ import annotations

from cut_optimizer_server.cli import main

if __name__ == "__main__":
    raise SystemExit(main())
