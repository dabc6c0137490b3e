"""
Pipeline package - I/O components: marketplace client, pacing, database access
and the worker pool that ties them together.
"""
