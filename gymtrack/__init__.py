"""Gym faction-control history: snapshot collector, history queries and dashboard API."""
