"""Allow ``python -m canvasagent``."""

from .app import main

raise SystemExit(main())
