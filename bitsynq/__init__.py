"""
Bitsynq — Contribution Tracking & Reward-Token Distribution
============================================================
Turns meeting transcripts and manual entries into contribution records,
converts accumulated contribution ratios into exact integer token
allocations, and optionally settles an allocation as ERC-20 transfers on
an EVM network.

Package layout::

    bitsynq/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Parser tables (headers, keywords, stopwords)
    ├── __main__.py        # ``python -m bitsynq`` command line
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + session/async helpers
    │   └── models.py      # All ORM models
    ├── engine/
    │   ├── participants.py # Parsed participant / meeting value types
    │   ├── transcript.py  # Meeting transcript → participants + ratios
    │   ├── matcher.py     # Participant names → project members
    │   └── allocation.py  # Ratios → exact integer token allocation
    └── services/
        ├── errors.py              # Service-level exception taxonomy
        ├── schemas.py             # Pydantic request models
        ├── project_service.py     # Projects, membership, rosters
        ├── contribution_service.py # Contribution ledger
        ├── meeting_service.py     # Transcript upload + processing
        ├── distribution_service.py # Preview / distribute / balances
        ├── transaction_log.py     # On-chain transaction journal
        └── settlement.py          # ERC-20 JSON-RPC settlement client
"""

__version__ = "0.1.0"
