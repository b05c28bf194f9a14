"""
FPL Per-90 Backend: entry point and re-exports.

Code lives in fpl_per90/ modules:
- config.py:      CONFIG + dataclass configs (metrics, leaderboard, query, cache, sources)
- constants.py:   Endpoints, position/column tables, numeric utilities
- models.py:      Enums, canonical PlayerMetrics record, pydantic response schemas
- cache.py:       DataCache singleton (season snapshots + disk persistence)
- calculators.py: Per-90 scaling and the derived metrics calculator
- normalizers.py: CSV parsing and the live / historical / stored row adapters
- rankings.py:    Filtering, column sorting, leaderboards, value bands
- db.py:          Async SQLAlchemy engine, session factory, schema
- services.py:    HTTP client, upstream fetchers, season loader, per-90 query
- ingest.py:      FPL API -> database ingestion job
- endpoints.py:   FastAPI app + API endpoints

Tests import from `main`; the star-imports re-export everything.
"""

import logging

from fpl_per90.config import *        # noqa: F401,F403
from fpl_per90.constants import *     # noqa: F401,F403
from fpl_per90.models import *        # noqa: F401,F403
from fpl_per90.cache import *         # noqa: F401,F403
from fpl_per90.calculators import *   # noqa: F401,F403
from fpl_per90.normalizers import *   # noqa: F401,F403
from fpl_per90.rankings import *      # noqa: F401,F403
from fpl_per90.endpoints import app   # noqa: F401

if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    uvicorn.run(app, host="0.0.0.0", port=8000)
