"""Shared pytest configuration."""

import freezegun

# freezegun scans every loaded module when freezing time; the lazily-loaded
# transformers package (pulled in by sentence-transformers) can raise during
# that scan, leaving time patched for the rest of the session.
freezegun.configure(extend_ignore_list=["transformers"])
