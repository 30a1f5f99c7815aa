"""FastAPI integration for AuthVault."""
