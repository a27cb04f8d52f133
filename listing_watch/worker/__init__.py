"""Scheduled monitoring: sweeps, credential refresh and housekeeping jobs."""
