"""Rate-limited client for the CRPT document registry API."""
