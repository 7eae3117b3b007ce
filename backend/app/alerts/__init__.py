"""
alerts — Emergency alert lifecycle engine.

Sub-modules:
    collaborators/  — Geocoder and plan generator clients, fallback plan table
    intake          — Structural validation and dedupe keys
    scorer          — Deterministic 0–100 priority score
    store           — Alert ownership, state machine, per-alert locks
    pipeline        — Orchestration: dedupe, scoring, timeout / retry / fallback
    aggregator      — Live filterable index and map markers
    events          — Change feed (poll + subscribe)
    service         — Wiring from settings
    models          — Data structures shared across the system
"""
