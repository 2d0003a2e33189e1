"""Spotify track popularity workshop: dedupe the track table, fit regressions, report."""
