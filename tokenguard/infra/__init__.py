"""Infrastructure adapters (PyJWT codec, Redis stores, sweeper)."""
