"""Storage, settings and error types shared by AuthVault."""
