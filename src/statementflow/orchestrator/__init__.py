"""Pipeline orchestration and payload delivery."""
