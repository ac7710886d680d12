"""Panorama Discovery Service."""
