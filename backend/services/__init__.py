"""Orchestration services and collaborator adapters."""
