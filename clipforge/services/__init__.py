"""
Services for the clipping backend.

Includes:
- Adapters (yt-dlp downloads, FFmpeg media operations, Gemini analysis)
- Pure helpers (reframe geometry, ASS caption rendering, fallback chains)
- State and orchestration (project store, progress bus, ingest/export pipelines)

Import from the submodules directly; the schemas package depends on the
project store, so this package stays import-free.
"""
