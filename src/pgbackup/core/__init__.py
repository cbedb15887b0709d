"""Core primitives: run data model, settings, errors, logging, run lock and retention."""
