"""Transcoding module: HLS packaging, validation, publishing and reconciliation."""
