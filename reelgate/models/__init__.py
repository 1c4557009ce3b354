"""Pydantic data models shared by the reelgate services."""
