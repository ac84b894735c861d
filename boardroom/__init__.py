"""Boardroom: structured career-governance sessions backed by a simulated board."""
