"""Mitgliederverwaltung - member administration with Keycloak account sync."""

__version__ = "0.1.0"
