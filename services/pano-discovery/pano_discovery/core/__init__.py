"""Core discovery engine: geometry, grid, probing, dedup and orchestration."""
