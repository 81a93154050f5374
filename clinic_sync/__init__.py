"""Polling sidecar that keeps a doctor's conversations and notifications in sync."""
