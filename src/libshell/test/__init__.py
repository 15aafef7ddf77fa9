"""Helper methods for libshell and downstream libraries."""
