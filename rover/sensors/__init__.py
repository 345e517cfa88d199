"""Heading and range sensor drivers."""
