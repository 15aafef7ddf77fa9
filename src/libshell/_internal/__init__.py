"""Internal machinery for libshell; not part of the public API."""
