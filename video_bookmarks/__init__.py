"""Timestamped video bookmarks: durable store, query engine and command router."""
