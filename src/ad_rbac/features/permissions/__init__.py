"""Effective permission resolution."""
