"""Framework services shared by jobs: failure alerts."""
