"""Test infrastructure: in-memory stand-ins for external tools and stores."""
