"""Export pipeline packages: sources, rendering, artifacts and export."""
