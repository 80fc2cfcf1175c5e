"""Maps provider client and its cache-first facade."""
