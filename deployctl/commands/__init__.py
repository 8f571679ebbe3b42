"""Command implementations behind the click CLI; each run_* returns an exit code."""
