"""Google Sheets access: blocking core, async wrappers and the TTL cache."""
