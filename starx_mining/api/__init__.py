"""HTTP API for triggering and inspecting mining jobs."""
