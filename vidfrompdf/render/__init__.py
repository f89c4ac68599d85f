"""Rasterization, codec negotiation and the ffmpeg render pipeline."""
