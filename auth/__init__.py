"""Participant identity verification and HTTP security middleware."""
