"""Audiobook Organizer -- identify scattered audiobook files and organize them into a library.

Core modules:
    config       -- Organizer configuration via pydantic-settings (.env + env vars),
                    path template overrides, and loguru setup.
    cli          -- Click CLI entry point. CLI flags passed as kwargs to
                    OrganizerConfig (no env pollution).
    orchestrator -- Batch state machine: scan, group, identify, score, organize.
                    Per-book failures are recorded, never fatal.
    events       -- Injected publish/subscribe EventBus with last-value replay.
    concurrency  -- Bounded asyncio TaskQueue, retry with exponential backoff.
    filesystem   -- Async wrappers over os/shutil (asyncio.to_thread).
    scanner      -- Recursive audio file discovery with depth, symlink, hidden,
                    size and exclude-pattern rules.
    grouping     -- Multi-file book grouping via an ordered pipeline of strip rules.
    identity     -- Title/author/series/ASIN inference from tags and names.
    scoring      -- Deterministic candidate scoring (title 60, author 30, series 10).
    metadata     -- Cached, retried provider lookups with metadata:* events.
    ffprobe      -- Tag codec: ffprobe reads, ffmpeg -c copy writes.
    sanitize     -- Filename and destination path sanitization.

Subpackages:
    api -- Metadata provider protocol and the Audnexus client
    ops -- Path templates and file placement
"""
