"""Valkey-backed events, invites, presence, statuses and profile settings."""