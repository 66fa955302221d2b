#!/usr/bin/env python3
"""
Transfer Watch - Main Application Entry Point.

============================================================
SINGLE ENTRYPOINT
============================================================
This is the ONE executable entry point for the detection engine.

- Compatible with PM2 process management
- Can be started, stopped, and restarted safely: scanning resumes
  from the persisted watermarks and already decided transfers are
  never alerted twice
- Handles SIGINT/SIGTERM gracefully

============================================================
USAGE
============================================================
Direct execution:
    python app.py init-db
    python app.py run
    python app.py run --chains tron --once

With PM2:
    pm2 start app.py --interpreter python --name transfer-watch -- run

Environment-based configuration (.env is loaded automatically):
    DATABASE_URL=postgresql://... TRONGRID_API_KEY=... python app.py run

============================================================
PM2 ECOSYSTEM CONFIG (ecosystem.config.js)
============================================================
module.exports = {
    apps: [{
        name: 'transfer-watch',
        script: 'app.py',
        interpreter: 'python',
        args: 'run',
        env: {
            LOG_LEVEL: 'INFO',
            LOG_FORMAT: 'json',
        },
        max_restarts: 10,
        restart_delay: 5000,
        watch: false,
    }]
};

============================================================
"""

import sys
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.absolute()
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from orchestrator.cli import main


# ============================================================
# ENTRY POINT
# ============================================================

if __name__ == "__main__":
    sys.exit(main())
