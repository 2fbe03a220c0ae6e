"""Client core — event bus, dedup, presentation policy, calls, auto-read.

Runs on one asyncio loop. Platform capabilities (desktop notifications,
audio, navigation, the socket itself) are protocols; client.fakes has
in-memory versions for tests and headless runs.
"""
