"""Experiment tracker backend with GrowthBook feature sync."""
