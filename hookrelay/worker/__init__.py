"""
Worker module.
Contains the delivery protocol, the per-queue worker and the standalone
worker process.
"""
